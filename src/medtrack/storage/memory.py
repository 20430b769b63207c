"""In-process storage backends.

Used by the test suite and for local runs without PostgreSQL.  Values are
copied on the way in and out so callers never share state with the store.
Each method finishes without yielding to the event loop, so every write is
atomic with respect to other coroutines.
"""

from __future__ import annotations

import copy
from dataclasses import replace
from datetime import date

from medtrack.engine.errors import NotFoundError
from medtrack.engine.models import DailyMedicineSchedule, IntakeEvent, Medicine
from medtrack.storage.base import StockLevels


class InMemoryMedicineRepository:
    def __init__(self, medicines: list[Medicine] | None = None) -> None:
        self._medicines: dict[tuple[str, str], Medicine] = {}
        for medicine in medicines or []:
            self._medicines[(medicine.user_id, medicine.id)] = copy.deepcopy(medicine)

    async def get_active_medicines(self, user_id: str) -> list[Medicine]:
        return [
            copy.deepcopy(m)
            for (owner, _), m in sorted(self._medicines.items())
            if owner == user_id and m.is_active
        ]

    async def get_medicine_by_id(self, user_id: str, medicine_id: str) -> Medicine:
        return copy.deepcopy(self._lookup(user_id, medicine_id))

    async def save_medicine(self, medicine: Medicine) -> Medicine:
        self._medicines[(medicine.user_id, medicine.id)] = copy.deepcopy(medicine)
        return copy.deepcopy(medicine)

    async def deduct_inventory(
        self, user_id: str, medicine_id: str, amount: float
    ) -> StockLevels | None:
        medicine = self._lookup(user_id, medicine_id)
        previous = medicine.current_inventory
        if previous is None:
            return None
        current = max(previous - amount, 0.0)
        self._medicines[(user_id, medicine_id)] = replace(medicine, current_inventory=current)
        return StockLevels(previous, current)

    async def set_stock(
        self,
        user_id: str,
        medicine_id: str,
        current_inventory: float,
        total_inventory: float | None,
    ) -> None:
        medicine = self._lookup(user_id, medicine_id)
        self._medicines[(user_id, medicine_id)] = replace(
            medicine, current_inventory=current_inventory, total_inventory=total_inventory
        )

    def _lookup(self, user_id: str, medicine_id: str) -> Medicine:
        try:
            return self._medicines[(user_id, medicine_id)]
        except KeyError:
            raise NotFoundError(f"Medicine {medicine_id} not found") from None


class InMemoryIntakeEventRepository:
    """Recorded intake events.

    Takes that deduct stock go through *medicines*, the repository holding
    the same user's medicines.
    """

    def __init__(
        self,
        events: list[IntakeEvent] | None = None,
        medicines: InMemoryMedicineRepository | None = None,
    ) -> None:
        self._events: dict[tuple[str, str], IntakeEvent] = {}
        self._medicines = medicines
        for event in events or []:
            self._events[(event.user_id, event.id)] = copy.deepcopy(event)

    async def get_events_for_date(self, user_id: str, day: date) -> list[IntakeEvent]:
        return sorted(
            (
                copy.deepcopy(e)
                for (owner, _), e in self._events.items()
                if owner == user_id and e.scheduled_datetime.date() == day
            ),
            key=lambda e: (e.scheduled_datetime, e.id),
        )

    async def get_event(self, user_id: str, event_id: str) -> IntakeEvent:
        try:
            return copy.deepcopy(self._events[(user_id, event_id)])
        except KeyError:
            raise NotFoundError(f"Intake event not found: {event_id}") from None

    async def persist_transition(self, user_id: str, event: IntakeEvent) -> IntakeEvent:
        return self._store(user_id, event)

    async def persist_take(
        self, user_id: str, event: IntakeEvent, deduct_amount: float | None
    ) -> tuple[IntakeEvent, StockLevels | None]:
        levels = None
        if deduct_amount is not None:
            if self._medicines is None:
                raise RuntimeError("No medicine repository to deduct stock from")
            # Deduct first: the event write below cannot fail.
            levels = await self._medicines.deduct_inventory(
                user_id, event.medicine_id, deduct_amount
            )
            if levels is not None:
                event = replace(event, current_inventory=levels.current)
        return self._store(user_id, event), levels

    def _store(self, user_id: str, event: IntakeEvent) -> IntakeEvent:
        stored = copy.deepcopy(event)
        # Display-only flags are derived at assembly time.
        stored.paused = False
        stored.can_take_late = False
        self._events[(user_id, event.id)] = stored
        return copy.deepcopy(stored)


class InMemoryScheduleCache:
    def __init__(self) -> None:
        self._entries: dict[tuple[str, date], dict] = {}

    async def get(self, user_id: str, day: date) -> DailyMedicineSchedule | None:
        entry = self._entries.get((user_id, day))
        if entry is None:
            return None
        return DailyMedicineSchedule.from_dict(entry)

    async def put(self, user_id: str, day: date, schedule: DailyMedicineSchedule) -> None:
        self._entries[(user_id, day)] = schedule.to_dict()
