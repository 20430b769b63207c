"""Domain models for medicines, recurrence rules, and intake events.

Frequency configurations are a tagged union: one frozen dataclass per
``FrequencyType`` carrying only the fields that variant uses.  The flat wire
format (``frequency_type`` + ``frequency_config``) is converted with
:func:`parse_frequency` and :func:`frequency_to_dict`.

Every model round-trips through ``to_dict()`` / ``from_dict()`` so the same
JSON shape is used by the schedule cache, the repositories and the API.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar

from medtrack.engine.errors import ConfigurationError, UnsupportedFrequencyError

DEFAULT_REFILL_REMINDER_THRESHOLD = 5.0
DEFAULT_MISSED_DOSE_THRESHOLD_MINUTES = 60
DEFAULT_LATE_INTAKE_WINDOW_HOURS = 4

DAYS_PER_WEEK = 7
# Months are approximated as a fixed day count, not calendar months.
DAYS_PER_MONTH = 30


class FrequencyType(enum.StrEnum):
    """Recurrence rule tags."""

    DAILY = "DAILY"
    EVERY_OTHER_DAY = "EVERY_OTHER_DAY"
    SPECIFIC_DAYS_OF_WEEK = "SPECIFIC_DAYS_OF_WEEK"
    EVERY_X_DAYS = "EVERY_X_DAYS"
    EVERY_X_WEEKS = "EVERY_X_WEEKS"
    EVERY_X_MONTHS = "EVERY_X_MONTHS"
    CYCLE_BASED = "CYCLE_BASED"


class DayOfWeek(enum.StrEnum):
    """Weekday tags, declared in ``date.weekday()`` order."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def of(cls, day: date) -> DayOfWeek:
        return list(cls)[day.weekday()]


class IntakeStatus(enum.StrEnum):
    """Status of a single intake event.

    ``PAUSED`` is display-only: it is derived when the owning medicine is
    paused and is never stored.
    """

    SCHEDULED = "SCHEDULED"
    TAKEN = "TAKEN"
    SKIPPED = "SKIPPED"
    MISSED = "MISSED"
    PAUSED = "PAUSED"


class MedicineForm(enum.StrEnum):
    PILL = "PILL"
    CAPSULE = "CAPSULE"
    HARDCAPSULE = "HARDCAPSULE"
    TABLET = "TABLET"
    INJECTION = "INJECTION"
    LIQUID = "LIQUID"
    DROPS = "DROPS"
    INHALER = "INHALER"
    POWDER = "POWDER"
    CREAM = "CREAM"
    GUMMYBEAR = "GUMMYBEAR"
    PATCH = "PATCH"
    GEL = "GEL"
    SPRAY = "SPRAY"
    OTHER = "OTHER"


class FoodInstruction(enum.StrEnum):
    BEFORE_EATING = "BEFORE_EATING"
    WHILE_EATING = "WHILE_EATING"
    AFTER_EATING = "AFTER_EATING"
    DOES_NOT_MATTER = "DOES_NOT_MATTER"
    EMPTY_STOMACH = "EMPTY_STOMACH"


# ---------------------------------------------------------------------------
# Frequency variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Daily:
    type: ClassVar[FrequencyType] = FrequencyType.DAILY


@dataclass(frozen=True)
class EveryOtherDay:
    type: ClassVar[FrequencyType] = FrequencyType.EVERY_OTHER_DAY


@dataclass(frozen=True)
class SpecificDaysOfWeek:
    type: ClassVar[FrequencyType] = FrequencyType.SPECIFIC_DAYS_OF_WEEK

    days: frozenset[DayOfWeek] = frozenset()


@dataclass(frozen=True)
class EveryXDays:
    type: ClassVar[FrequencyType] = FrequencyType.EVERY_X_DAYS

    interval_days: int = 1


@dataclass(frozen=True)
class EveryXWeeks:
    """Every N weeks; ``interval_days`` is already multiplied by seven."""

    type: ClassVar[FrequencyType] = FrequencyType.EVERY_X_WEEKS

    interval_days: int = DAYS_PER_WEEK

    @classmethod
    def of(cls, weeks: int) -> EveryXWeeks:
        return cls(interval_days=weeks * DAYS_PER_WEEK)


@dataclass(frozen=True)
class EveryXMonths:
    """Every N months; ``interval_days`` is already multiplied by thirty."""

    type: ClassVar[FrequencyType] = FrequencyType.EVERY_X_MONTHS

    interval_days: int = DAYS_PER_MONTH

    @classmethod
    def of(cls, months: int) -> EveryXMonths:
        return cls(interval_days=months * DAYS_PER_MONTH)


@dataclass(frozen=True)
class CycleBased:
    type: ClassVar[FrequencyType] = FrequencyType.CYCLE_BASED

    active_days: int = 0
    rest_days: int = 0


@dataclass(frozen=True)
class UnrecognizedFrequency:
    """Placeholder for a stored frequency tag this version does not understand.

    Loading never fails on an unknown tag; the evaluator raises
    :class:`UnsupportedFrequencyError` when it meets one, so the failure stays
    scoped to that medicine.
    """

    raw_type: str
    raw_config: Mapping[str, Any] = field(default_factory=dict)


Frequency = (
    Daily
    | EveryOtherDay
    | SpecificDaysOfWeek
    | EveryXDays
    | EveryXWeeks
    | EveryXMonths
    | CycleBased
    | UnrecognizedFrequency
)


def _config_value(config: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in config:
        return config[snake]
    return config.get(camel)


def _as_int(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def parse_frequency(
    frequency_type: str | FrequencyType,
    config: Mapping[str, Any] | None = None,
    *,
    strict: bool = True,
) -> Frequency:
    """Build a frequency variant from the flat wire representation.

    Only the fields relevant to *frequency_type* are read.  Accepts both
    snake_case and the mobile client's camelCase keys.  Week and month counts
    may be given directly (``weeks`` / ``months``); otherwise
    ``interval_days`` is taken as already normalised to days.

    With ``strict=False`` an unknown tag yields an
    :class:`UnrecognizedFrequency` instead of raising.
    """
    config = config or {}
    try:
        tag = FrequencyType(str(frequency_type).upper())
    except ValueError:
        if strict:
            raise UnsupportedFrequencyError(frequency_type) from None
        return UnrecognizedFrequency(raw_type=str(frequency_type), raw_config=dict(config))

    if tag is FrequencyType.DAILY:
        return Daily()
    if tag is FrequencyType.EVERY_OTHER_DAY:
        return EveryOtherDay()
    if tag is FrequencyType.SPECIFIC_DAYS_OF_WEEK:
        raw_days = _config_value(config, "specific_days", "specificDays") or []
        try:
            days = frozenset(DayOfWeek(str(d).upper()) for d in raw_days)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid weekday in {raw_days!r}") from exc
        return SpecificDaysOfWeek(days=days)
    if tag is FrequencyType.EVERY_X_DAYS:
        interval = _config_value(config, "interval_days", "intervalDays")
        return EveryXDays(interval_days=_as_int(interval, "interval_days", 1))
    if tag is FrequencyType.EVERY_X_WEEKS:
        if config.get("weeks") is not None:
            return EveryXWeeks.of(_as_int(config["weeks"], "weeks", 1))
        interval = _config_value(config, "interval_days", "intervalDays")
        return EveryXWeeks(interval_days=_as_int(interval, "interval_days", DAYS_PER_WEEK))
    if tag is FrequencyType.EVERY_X_MONTHS:
        if config.get("months") is not None:
            return EveryXMonths.of(_as_int(config["months"], "months", 1))
        interval = _config_value(config, "interval_days", "intervalDays")
        return EveryXMonths(interval_days=_as_int(interval, "interval_days", DAYS_PER_MONTH))
    # CYCLE_BASED
    active = _config_value(config, "cycle_active_days", "cycleActiveDays")
    rest = _config_value(config, "cycle_rest_days", "cycleRestDays")
    return CycleBased(
        active_days=_as_int(active, "cycle_active_days", 0),
        rest_days=_as_int(rest, "cycle_rest_days", 0),
    )


def frequency_to_dict(frequency: Frequency) -> dict[str, Any]:
    """Serialise a frequency variant to ``{"frequency_type", "frequency_config"}``."""
    if isinstance(frequency, UnrecognizedFrequency):
        return {"frequency_type": frequency.raw_type, "frequency_config": dict(frequency.raw_config)}

    config: dict[str, Any] = {}
    if isinstance(frequency, SpecificDaysOfWeek):
        config["specific_days"] = [d.value for d in DayOfWeek if d in frequency.days]
    elif isinstance(frequency, (EveryXDays, EveryXWeeks, EveryXMonths)):
        config["interval_days"] = frequency.interval_days
    elif isinstance(frequency, CycleBased):
        config["cycle_active_days"] = frequency.active_days
        config["cycle_rest_days"] = frequency.rest_days
    return {"frequency_type": frequency.type.value, "frequency_config": config}


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    return _parse_datetime(value)


def _parse_optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _parse_optional_enum(enum_cls: type[enum.StrEnum], value: Any) -> Any:
    if value is None:
        return None
    return enum_cls(str(value))


def _isoformat(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Medicine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntakeSchedule:
    """One configured intake: a wall-clock time (``HH:MM``) and an amount."""

    time: str
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IntakeSchedule:
        return cls(time=str(data["time"]), amount=float(data["amount"]))


@dataclass
class Medicine:
    """A user's medicine with its recurrence rule, intake times and stock."""

    id: str
    user_id: str
    name: str
    frequency: Frequency
    intake_schedules: list[IntakeSchedule]
    schedule_start: date
    form: MedicineForm = MedicineForm.PILL
    schedule_duration: int | None = None
    current_inventory: float | None = None
    total_inventory: float | None = None
    refill_reminder_threshold: float = DEFAULT_REFILL_REMINDER_THRESHOLD
    is_active: bool = True
    condition_reason: str | None = None
    food_instruction: FoodInstruction | None = None
    auto_deduct_inventory: bool = True
    notifications_enabled: bool = True
    missed_dose_threshold_minutes: int = DEFAULT_MISSED_DOSE_THRESHOLD_MINUTES
    allow_late_intake: bool = True
    late_intake_window_hours: int = DEFAULT_LATE_INTAKE_WINDOW_HOURS
    pause_reason: str | None = None
    resume_at: datetime | None = None

    @property
    def tracks_inventory(self) -> bool:
        return self.current_inventory is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "form": self.form.value,
            **frequency_to_dict(self.frequency),
            "intake_schedules": [s.to_dict() for s in self.intake_schedules],
            "schedule_start": self.schedule_start.isoformat(),
            "schedule_duration": self.schedule_duration,
            "current_inventory": self.current_inventory,
            "total_inventory": self.total_inventory,
            "refill_reminder_threshold": self.refill_reminder_threshold,
            "is_active": self.is_active,
            "condition_reason": self.condition_reason,
            "food_instruction": self.food_instruction.value if self.food_instruction else None,
            "auto_deduct_inventory": self.auto_deduct_inventory,
            "notifications_enabled": self.notifications_enabled,
            "missed_dose_threshold_minutes": self.missed_dose_threshold_minutes,
            "allow_late_intake": self.allow_late_intake,
            "late_intake_window_hours": self.late_intake_window_hours,
            "pause_reason": self.pause_reason,
            "resume_at": _isoformat(self.resume_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Medicine:
        """Reconstruct a Medicine from ``to_dict()`` output or a database row.

        Unknown frequency tags are preserved as :class:`UnrecognizedFrequency`.
        """
        threshold = data.get("refill_reminder_threshold")
        missed_after = data.get("missed_dose_threshold_minutes")
        late_window = data.get("late_intake_window_hours")
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            name=data["name"],
            form=MedicineForm(data.get("form") or MedicineForm.PILL),
            frequency=parse_frequency(
                data["frequency_type"], data.get("frequency_config"), strict=False
            ),
            intake_schedules=[IntakeSchedule.from_dict(s) for s in data.get("intake_schedules") or []],
            schedule_start=_parse_date(data["schedule_start"]),
            schedule_duration=data.get("schedule_duration"),
            current_inventory=_parse_optional_float(data.get("current_inventory")),
            total_inventory=_parse_optional_float(data.get("total_inventory")),
            refill_reminder_threshold=(
                float(threshold) if threshold is not None else DEFAULT_REFILL_REMINDER_THRESHOLD
            ),
            is_active=bool(data.get("is_active", True)),
            condition_reason=data.get("condition_reason"),
            food_instruction=_parse_optional_enum(FoodInstruction, data.get("food_instruction")),
            auto_deduct_inventory=bool(data.get("auto_deduct_inventory", True)),
            notifications_enabled=bool(data.get("notifications_enabled", True)),
            missed_dose_threshold_minutes=(
                int(missed_after)
                if missed_after is not None
                else DEFAULT_MISSED_DOSE_THRESHOLD_MINUTES
            ),
            allow_late_intake=bool(data.get("allow_late_intake", True)),
            late_intake_window_hours=(
                int(late_window) if late_window is not None else DEFAULT_LATE_INTAKE_WINDOW_HOURS
            ),
            pause_reason=data.get("pause_reason"),
            resume_at=_parse_optional_datetime(data.get("resume_at")),
        )


# ---------------------------------------------------------------------------
# Intake events and daily schedules
# ---------------------------------------------------------------------------


@dataclass
class IntakeEvent:
    """One concrete scheduled-or-recorded dose.

    Mutated only through the intake state machine, which returns new
    instances rather than editing in place.
    """

    id: str
    user_id: str
    medicine_id: str
    medicine_name: str
    scheduled_datetime: datetime
    scheduled_amount: float
    status: IntakeStatus = IntakeStatus.SCHEDULED
    actual_datetime: datetime | None = None
    actual_amount: float | None = None
    skip_reason: str | None = None
    note: str | None = None
    current_inventory: float | None = None
    refill_reminder_threshold: float | None = None
    food_instruction: FoodInstruction | None = None
    can_take_late: bool = False
    paused: bool = False

    @property
    def display_status(self) -> IntakeStatus:
        if self.paused and self.status is IntakeStatus.SCHEDULED:
            return IntakeStatus.PAUSED
        return self.status

    @property
    def key(self) -> tuple[str, datetime]:
        """Identity of the dose slot this event fills."""
        return (self.medicine_id, self.scheduled_datetime)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "scheduled_datetime": self.scheduled_datetime.isoformat(),
            "scheduled_amount": self.scheduled_amount,
            "status": self.status.value,
            "display_status": self.display_status.value,
            "actual_datetime": _isoformat(self.actual_datetime),
            "actual_amount": self.actual_amount,
            "skip_reason": self.skip_reason,
            "note": self.note,
            "current_inventory": self.current_inventory,
            "refill_reminder_threshold": self.refill_reminder_threshold,
            "food_instruction": self.food_instruction.value if self.food_instruction else None,
            "can_take_late": self.can_take_late,
            "paused": self.paused,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IntakeEvent:
        status = IntakeStatus(data.get("status") or IntakeStatus.SCHEDULED)
        if status is IntakeStatus.PAUSED:
            raise ValueError("PAUSED is a display status and cannot be stored")
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            medicine_id=str(data["medicine_id"]),
            medicine_name=data.get("medicine_name") or "",
            scheduled_datetime=_parse_datetime(data["scheduled_datetime"]),
            scheduled_amount=float(data["scheduled_amount"]),
            status=status,
            actual_datetime=_parse_optional_datetime(data.get("actual_datetime")),
            actual_amount=_parse_optional_float(data.get("actual_amount")),
            skip_reason=data.get("skip_reason"),
            note=data.get("note"),
            current_inventory=_parse_optional_float(data.get("current_inventory")),
            refill_reminder_threshold=_parse_optional_float(data.get("refill_reminder_threshold")),
            food_instruction=_parse_optional_enum(FoodInstruction, data.get("food_instruction")),
            can_take_late=bool(data.get("can_take_late", False)),
            paused=bool(data.get("paused", False)),
        )


@dataclass(frozen=True)
class ScheduleWarning:
    """A non-fatal, per-medicine problem encountered while building a schedule."""

    medicine_id: str
    medicine_name: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "error_type": self.error_type,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduleWarning:
        return cls(
            medicine_id=str(data["medicine_id"]),
            medicine_name=data.get("medicine_name") or "",
            error_type=data["error_type"],
            message=data["message"],
        )


@dataclass
class DailyMedicineSchedule:
    """All intake events for one user and date, ordered by scheduled time.

    Aggregate counts are derived from ``intake_events`` and never stored.
    ``available=False`` means no data could be obtained at all, which is
    different from a day with zero doses.
    """

    date: date
    intake_events: list[IntakeEvent] = field(default_factory=list)
    warnings: list[ScheduleWarning] = field(default_factory=list)
    available: bool = True
    from_cache: bool = False

    @classmethod
    def unavailable(cls, day: date) -> DailyMedicineSchedule:
        return cls(date=day, available=False)

    def _count(self, status: IntakeStatus) -> int:
        return sum(1 for e in self.intake_events if e.status is status)

    @property
    def total_scheduled(self) -> int:
        return len(self.intake_events)

    @property
    def total_taken(self) -> int:
        return self._count(IntakeStatus.TAKEN)

    @property
    def total_skipped(self) -> int:
        return self._count(IntakeStatus.SKIPPED)

    @property
    def total_missed(self) -> int:
        return self._count(IntakeStatus.MISSED)

    @property
    def total_pending(self) -> int:
        return self._count(IntakeStatus.SCHEDULED)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-safe dictionary (counts included for readers)."""
        return {
            "date": self.date.isoformat(),
            "intake_events": [e.to_dict() for e in self.intake_events],
            "total_scheduled": self.total_scheduled,
            "total_taken": self.total_taken,
            "total_skipped": self.total_skipped,
            "total_missed": self.total_missed,
            "total_pending": self.total_pending,
            "warnings": [w.to_dict() for w in self.warnings],
            "available": self.available,
            "from_cache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DailyMedicineSchedule:
        """Rebuild from ``to_dict()`` output; stored counts are ignored."""
        return cls(
            date=_parse_date(data["date"]),
            intake_events=[IntakeEvent.from_dict(e) for e in data.get("intake_events") or []],
            warnings=[ScheduleWarning.from_dict(w) for w in data.get("warnings") or []],
            available=bool(data.get("available", True)),
            from_cache=bool(data.get("from_cache", False)),
        )
