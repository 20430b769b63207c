"""Schedule assembly — build a user's daily intake schedule.

For each active medicine the recurrence rule is evaluated for the date, the
configured intake times are expanded into dose instants, and each instant is
reconciled with any persisted :class:`IntakeEvent` for the same
(medicine, scheduled time).  Instants with no persisted event get a freshly
synthesised SCHEDULED event; synthesis never writes to storage.

Synthesised events carry a deterministic id derived from the medicine id and
the scheduled time (see :func:`event_id_for`), so a later transition on an
event that was never persisted can rebuild it from the medicine alone.

Reads are offline-first: when a repository raises ``NetworkError`` the last
cached schedule for the same (user, date) is returned instead.  With no cache
entry an explicit unavailable schedule is returned; this never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta

from opentelemetry import trace

from medtrack.engine.doses import DoseInstant, expand
from medtrack.engine.errors import (
    ConfigurationError,
    NetworkError,
    NotFoundError,
    UnsupportedFrequencyError,
)
from medtrack.engine.models import (
    DEFAULT_MISSED_DOSE_THRESHOLD_MINUTES,
    DailyMedicineSchedule,
    IntakeEvent,
    IntakeStatus,
    Medicine,
    ScheduleWarning,
)
from medtrack.engine.recurrence import is_medicine_active_on
from medtrack.storage.base import IntakeEventRepository, MedicineRepository, ScheduleCache

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_EVENT_ID_TIME_FORMAT = "%Y%m%dT%H%M"
_LATE_ELIGIBLE = frozenset({IntakeStatus.SCHEDULED, IntakeStatus.MISSED})


def event_id_for(medicine_id: str, scheduled_datetime: datetime) -> str:
    """Deterministic id of the dose slot (medicine, scheduled time)."""
    return f"{medicine_id}:{scheduled_datetime.strftime(_EVENT_ID_TIME_FORMAT)}"


def parse_event_id(event_id: str) -> tuple[str, datetime]:
    """Inverse of :func:`event_id_for`.

    Raises:
        NotFoundError: If *event_id* is not a slot id.
    """
    medicine_id, sep, stamp = event_id.rpartition(":")
    if not sep or not medicine_id:
        raise NotFoundError(f"Intake event not found: {event_id}")
    try:
        return medicine_id, datetime.strptime(stamp, _EVENT_ID_TIME_FORMAT)
    except ValueError:
        raise NotFoundError(f"Intake event not found: {event_id}") from None


def can_take_late(medicine: Medicine, event: IntakeEvent, now: datetime) -> bool:
    """Whether *event* may still be taken after its scheduled time."""
    if not medicine.allow_late_intake or event.status not in _LATE_ELIGIBLE:
        return False
    deadline = event.scheduled_datetime + timedelta(hours=medicine.late_intake_window_hours)
    return event.scheduled_datetime <= now <= deadline


def synthesize_event(
    user_id: str, medicine: Medicine, instant: DoseInstant, now: datetime
) -> IntakeEvent:
    """Create a SCHEDULED event for *instant* with the medicine's inventory snapshot."""
    event = IntakeEvent(
        id=event_id_for(medicine.id, instant.datetime),
        user_id=user_id,
        medicine_id=medicine.id,
        medicine_name=medicine.name,
        scheduled_datetime=instant.datetime,
        scheduled_amount=instant.amount,
        current_inventory=medicine.current_inventory,
        refill_reminder_threshold=medicine.refill_reminder_threshold,
        food_instruction=medicine.food_instruction,
    )
    event.can_take_late = can_take_late(medicine, event, now)
    return event


def _sort_key(event: IntakeEvent) -> tuple[datetime, str, str]:
    return (event.scheduled_datetime, event.medicine_name, event.id)


def assemble(
    user_id: str,
    day: date,
    medicines: Sequence[Medicine],
    events: Sequence[IntakeEvent],
    now: datetime,
) -> DailyMedicineSchedule:
    """Build the schedule for *day* from already-fetched data.

    Synchronous and free of I/O.  Evaluation errors are contained per
    medicine: the medicine is left out and a :class:`ScheduleWarning` is
    recorded.  Persisted events of medicines missing from *medicines* (paused
    ones) are kept and flagged ``paused``.
    """
    persisted = {e.key: e for e in events}
    active_ids = {m.id for m in medicines}
    excluded_ids: set[str] = set()
    intake_events: list[IntakeEvent] = []
    warnings: list[ScheduleWarning] = []

    for medicine in medicines:
        try:
            if not is_medicine_active_on(medicine, day):
                continue
            instants = expand(medicine.intake_schedules, day)
        except (ConfigurationError, UnsupportedFrequencyError) as exc:
            logger.warning(
                "Excluding medicine %s from schedule for %s: %s", medicine.id, day, exc
            )
            excluded_ids.add(medicine.id)
            warnings.append(
                ScheduleWarning(
                    medicine_id=medicine.id,
                    medicine_name=medicine.name,
                    error_type=type(exc).__name__,
                    message=str(exc),
                )
            )
            continue

        for instant in instants:
            existing = persisted.pop((medicine.id, instant.datetime), None)
            if existing is None:
                intake_events.append(synthesize_event(user_id, medicine, instant, now))
            else:
                intake_events.append(
                    replace(
                        existing,
                        paused=False,
                        can_take_late=can_take_late(medicine, existing, now),
                    )
                )

    for leftover in persisted.values():
        if leftover.medicine_id not in active_ids:
            intake_events.append(replace(leftover, paused=True, can_take_late=False))
        elif (
            leftover.medicine_id not in excluded_ids
            and leftover.status is not IntakeStatus.SCHEDULED
        ):
            # Recorded dose whose slot no longer exists (intake times were edited).
            intake_events.append(leftover)

    intake_events.sort(key=_sort_key)
    return DailyMedicineSchedule(date=day, intake_events=intake_events, warnings=warnings)


class ScheduleAssembler:
    """Builds daily schedules from the repositories with cache fallback."""

    def __init__(
        self,
        medicines: MedicineRepository,
        events: IntakeEventRepository,
        cache: ScheduleCache | None = None,
        clock: Clock = datetime.now,
        default_missed_dose_threshold_minutes: int = DEFAULT_MISSED_DOSE_THRESHOLD_MINUTES,
    ) -> None:
        self._medicines = medicines
        self._events = events
        self._cache = cache
        self._clock = clock
        self._default_missed_threshold = default_missed_dose_threshold_minutes
        self._tracer = trace.get_tracer("medtrack")

    @property
    def medicines(self) -> MedicineRepository:
        return self._medicines

    @property
    def events(self) -> IntakeEventRepository:
        return self._events

    def now(self) -> datetime:
        return self._clock()

    async def build_daily_schedule(self, user_id: str, day: date) -> DailyMedicineSchedule:
        """Return the schedule for (*user_id*, *day*); never raises on read failure."""
        with self._tracer.start_as_current_span("medtrack.schedule.build_daily") as span:
            span.set_attribute("medtrack.date", day.isoformat())
            try:
                medicines = await self._medicines.get_active_medicines(user_id)
                events = await self._events.get_events_for_date(user_id, day)
            except NetworkError as exc:
                span.set_attribute("medtrack.from_cache", True)
                return await self._fallback(user_id, day, exc)

            schedule = assemble(user_id, day, medicines, events, self.now())
            await self._store(user_id, day, schedule)
            return schedule

    async def build_weekly_schedule(self, user_id: str, start: date) -> list[DailyMedicineSchedule]:
        """Seven consecutive daily schedules starting at *start*."""
        return [
            await self.build_daily_schedule(user_id, start + timedelta(days=offset))
            for offset in range(7)
        ]

    async def get_upcoming_dose_instants(
        self,
        user_id: str,
        horizon: timedelta,
        now: datetime | None = None,
    ) -> list[IntakeEvent]:
        """SCHEDULED, non-paused events due in ``[now, now + horizon]``.

        Consumed by a notification scheduler; nothing here schedules
        notifications itself.
        """
        now = now or self.now()
        end = now + horizon
        upcoming: list[IntakeEvent] = []
        day = now.date()
        while day <= end.date():
            schedule = await self.build_daily_schedule(user_id, day)
            upcoming.extend(
                e
                for e in schedule.intake_events
                if e.display_status is IntakeStatus.SCHEDULED and now <= e.scheduled_datetime <= end
            )
            day += timedelta(days=1)
        return upcoming

    async def get_overdue_intakes(
        self,
        user_id: str,
        now: datetime | None = None,
        lookback_days: int = 1,
    ) -> list[IntakeEvent]:
        """SCHEDULED events whose per-medicine missed-dose threshold has passed.

        Looks back *lookback_days* days before today.  Returns an empty list
        when the data source is unreachable.
        """
        now = now or self.now()
        try:
            medicines = {m.id: m for m in await self._medicines.get_active_medicines(user_id)}
        except NetworkError as exc:
            logger.warning("Cannot determine overdue intakes for %s: %s", user_id, exc)
            return []

        overdue: list[IntakeEvent] = []
        for offset in range(lookback_days, -1, -1):
            schedule = await self.build_daily_schedule(user_id, now.date() - timedelta(days=offset))
            if schedule.from_cache:
                # Stale data: doses may already have been acted on.
                continue
            for event in schedule.intake_events:
                if event.display_status is not IntakeStatus.SCHEDULED:
                    continue
                medicine = medicines.get(event.medicine_id)
                minutes = (
                    medicine.missed_dose_threshold_minutes
                    if medicine is not None
                    else self._default_missed_threshold
                )
                if event.scheduled_datetime + timedelta(minutes=minutes) < now:
                    overdue.append(event)
        return overdue

    async def find_event(self, user_id: str, event_id: str) -> IntakeEvent:
        """Latest known state of *event_id*, persisted or synthesised.

        Raises:
            NotFoundError: If the id is neither persisted nor a valid dose
                slot of an active medicine.
        """
        try:
            return await self._events.get_event(user_id, event_id)
        except NotFoundError:
            pass

        medicine_id, scheduled = parse_event_id(event_id)
        medicine = await self._medicines.get_medicine_by_id(user_id, medicine_id)
        if not medicine.is_active:
            raise NotFoundError(f"Medicine {medicine_id} is paused")
        # Evaluation errors propagate: the slot cannot be verified.
        if is_medicine_active_on(medicine, scheduled.date()):
            for instant in expand(medicine.intake_schedules, scheduled.date()):
                if instant.datetime == scheduled:
                    return synthesize_event(user_id, medicine, instant, self.now())
        raise NotFoundError(f"Intake event not found: {event_id}")

    async def _fallback(
        self, user_id: str, day: date, exc: NetworkError
    ) -> DailyMedicineSchedule:
        logger.warning("Schedule fetch for %s failed (%s); falling back to cache", day, exc)
        if self._cache is not None:
            try:
                cached = await self._cache.get(user_id, day)
            except NetworkError as cache_exc:
                logger.warning("Schedule cache read failed for %s: %s", day, cache_exc)
                cached = None
            except (KeyError, TypeError, ValueError) as cache_exc:
                logger.warning("Ignoring corrupt cached schedule for %s: %r", day, cache_exc)
                cached = None
            if cached is not None:
                cached.from_cache = True
                return cached
        return DailyMedicineSchedule.unavailable(day)

    async def _store(self, user_id: str, day: date, schedule: DailyMedicineSchedule) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.put(user_id, day, schedule)
        except NetworkError as exc:
            logger.warning("Schedule cache write failed for %s: %s", day, exc)


class ScheduleRequestTracker:
    """Latest-request-wins guard for interactive date selection.

    Each :meth:`fetch` supersedes the previous one; a fetch that completes
    after a newer one has started returns ``None`` and its result is dropped.
    """

    def __init__(self, assembler: ScheduleAssembler) -> None:
        self._assembler = assembler
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def fetch(self, user_id: str, day: date) -> DailyMedicineSchedule | None:
        self._generation += 1
        token = self._generation
        schedule = await self._assembler.build_daily_schedule(user_id, day)
        if token != self._generation:
            logger.debug("Discarding stale schedule for %s (request %d)", day, token)
            return None
        return schedule
