"""Storage protocols consumed by the scheduling engine.

Implementations raise :class:`~medtrack.engine.errors.NetworkError` when the
backing store cannot be reached, and
:class:`~medtrack.engine.errors.NotFoundError` for unknown ids.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, NamedTuple, Protocol

if TYPE_CHECKING:
    from medtrack.engine.models import DailyMedicineSchedule, IntakeEvent, Medicine


class StockLevels(NamedTuple):
    """Stock before and after one atomic deduction."""

    previous: float
    current: float


class MedicineRepository(Protocol):
    """Read and write a user's medicines."""

    async def get_active_medicines(self, user_id: str) -> list[Medicine]:
        """Return the user's medicines that are not paused."""
        ...

    async def get_medicine_by_id(self, user_id: str, medicine_id: str) -> Medicine:
        """Return one medicine, paused or not.

        Raises:
            NotFoundError: If the medicine does not belong to the user.
        """
        ...

    async def save_medicine(self, medicine: Medicine) -> Medicine:
        """Insert or replace *medicine*."""
        ...

    async def deduct_inventory(
        self, user_id: str, medicine_id: str, amount: float
    ) -> StockLevels | None:
        """Subtract *amount* from the stored stock in one step, flooring at zero.

        The deduction is relative to the stored value, so concurrent
        deductions never overwrite each other.  Returns None when the
        medicine does not track stock.
        """
        ...

    async def set_stock(
        self,
        user_id: str,
        medicine_id: str,
        current_inventory: float,
        total_inventory: float | None,
    ) -> None:
        """Overwrite the stock columns only; other fields are left untouched."""
        ...


class IntakeEventRepository(Protocol):
    """Read and write recorded intake events."""

    async def get_events_for_date(self, user_id: str, day: date) -> list[IntakeEvent]:
        """Return every persisted event scheduled on *day*."""
        ...

    async def get_event(self, user_id: str, event_id: str) -> IntakeEvent:
        """Return one event.

        Raises:
            NotFoundError: If the event does not belong to the user.
        """
        ...

    async def persist_transition(self, user_id: str, event: IntakeEvent) -> IntakeEvent:
        """Upsert *event* (keyed by id) and return the stored version."""
        ...

    async def persist_take(
        self, user_id: str, event: IntakeEvent, deduct_amount: float | None
    ) -> tuple[IntakeEvent, StockLevels | None]:
        """Upsert a TAKEN *event* and deduct its stock as one unit of work.

        When *deduct_amount* is set, the event's ``current_inventory`` is
        stamped with the post-deduction stock.  Either both writes land or
        neither does.
        """
        ...


class ScheduleCache(Protocol):
    """Last known-good schedule per (user, date); replaced wholesale on put."""

    async def get(self, user_id: str, day: date) -> DailyMedicineSchedule | None: ...

    async def put(self, user_id: str, day: date, schedule: DailyMedicineSchedule) -> None: ...
