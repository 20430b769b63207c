"""Medicine recurrence, scheduling and intake-tracking engine."""

from medtrack.engine.errors import (
    ConfigurationError,
    IntakeValidationError,
    InvalidTransitionError,
    MedtrackError,
    NetworkError,
    NotFoundError,
    UnsupportedFrequencyError,
)
from medtrack.engine.models import (
    DailyMedicineSchedule,
    DayOfWeek,
    FrequencyType,
    IntakeEvent,
    IntakeSchedule,
    IntakeStatus,
    Medicine,
    parse_frequency,
)
from medtrack.engine.recurrence import is_active_on
from medtrack.engine.schedule import ScheduleAssembler, ScheduleRequestTracker
from medtrack.engine.service import IntakeService

__all__ = [
    "ConfigurationError",
    "DailyMedicineSchedule",
    "DayOfWeek",
    "FrequencyType",
    "IntakeEvent",
    "IntakeSchedule",
    "IntakeService",
    "IntakeStatus",
    "IntakeValidationError",
    "InvalidTransitionError",
    "Medicine",
    "MedtrackError",
    "NetworkError",
    "NotFoundError",
    "ScheduleAssembler",
    "ScheduleRequestTracker",
    "UnsupportedFrequencyError",
    "is_active_on",
    "parse_frequency",
]
