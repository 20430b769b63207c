"""Storage protocols and backends for medicines, intake events and the schedule cache."""

from medtrack.storage.base import (
    IntakeEventRepository,
    MedicineRepository,
    ScheduleCache,
    StockLevels,
)
from medtrack.storage.memory import (
    InMemoryIntakeEventRepository,
    InMemoryMedicineRepository,
    InMemoryScheduleCache,
)

__all__ = [
    "InMemoryIntakeEventRepository",
    "InMemoryMedicineRepository",
    "InMemoryScheduleCache",
    "IntakeEventRepository",
    "MedicineRepository",
    "ScheduleCache",
    "StockLevels",
]
