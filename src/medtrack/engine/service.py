"""Intake orchestration: load, transition, persist.

Each call loads the latest known state of one event, applies a single state
machine transition and persists it.  A take and its stock deduction are
written together: either both land or neither does, so a failed take can be
retried.  The refill alert is computed from the stock levels the store
reports, not from the snapshot the transition was validated against.
Write failures (``NetworkError``) propagate to the caller; there is no
offline write queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from medtrack.engine import intake
from medtrack.engine.errors import MedtrackError
from medtrack.engine.intake import TransitionResult
from medtrack.engine.inventory import InventoryLedger
from medtrack.engine.schedule import ScheduleAssembler

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceResult:
    """Outcome of a missed-dose sweep."""

    processed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"processed": self.processed, "errors": list(self.errors), "success": self.success}


class IntakeService:
    """Applies take / skip / missed transitions for a user's intake events."""

    def __init__(self, assembler: ScheduleAssembler, ledger: InventoryLedger | None = None) -> None:
        self._assembler = assembler
        self._ledger = ledger or InventoryLedger(assembler.medicines)

    async def take(
        self,
        user_id: str,
        event_id: str,
        actual_datetime: datetime | None = None,
        actual_amount: float | None = None,
        note: str | None = None,
        deduct_from_inventory: bool | None = None,
    ) -> TransitionResult:
        """Take a dose.

        *deduct_from_inventory* defaults to the medicine's
        ``auto_deduct_inventory`` setting.
        """
        event = await self._assembler.find_event(user_id, event_id)
        medicine = await self._assembler.medicines.get_medicine_by_id(user_id, event.medicine_id)
        if deduct_from_inventory is None:
            deduct_from_inventory = medicine.auto_deduct_inventory

        result = intake.take(
            event,
            medicine,
            actual_datetime or self._assembler.now(),
            actual_amount=actual_amount,
            deduct_from_inventory=deduct_from_inventory,
            note=note,
        )
        deduct_amount = result.event.actual_amount if result.inventory is not None else None
        stored, levels = await self._assembler.events.persist_take(
            user_id, result.event, deduct_amount
        )
        logger.info("Intake event %s -> %s", stored.id, stored.status.value)
        change = self._ledger.record_deduction(medicine, levels) if levels is not None else None
        return TransitionResult(event=stored, inventory=change)

    async def skip(
        self, user_id: str, event_id: str, reason: str, note: str | None = None
    ) -> TransitionResult:
        event = await self._assembler.find_event(user_id, event_id)
        return await self._persist(user_id, intake.skip(event, reason, note))

    async def mark_missed(self, user_id: str, event_id: str) -> TransitionResult:
        event = await self._assembler.find_event(user_id, event_id)
        result = intake.mark_missed(event)
        if not result.changed:
            return result
        return await self._persist(user_id, result)

    async def process_missed_doses(
        self, user_id: str, now: datetime | None = None
    ) -> MaintenanceResult:
        """Mark every overdue SCHEDULED dose as MISSED, one event at a time."""
        outcome = MaintenanceResult()
        for event in await self._assembler.get_overdue_intakes(user_id, now=now):
            try:
                result = intake.mark_missed(event)
                if result.changed:
                    await self._persist(user_id, result)
                    outcome.processed += 1
            except MedtrackError as exc:
                logger.warning("Could not mark %s missed: %s", event.id, exc)
                outcome.errors.append(f"{event.id}: {exc}")
        logger.info(
            "Missed-dose sweep for %s: %d marked, %d errors",
            user_id,
            outcome.processed,
            len(outcome.errors),
        )
        return outcome

    async def _persist(self, user_id: str, result: TransitionResult) -> TransitionResult:
        stored = await self._assembler.events.persist_transition(user_id, result.event)
        logger.info("Intake event %s -> %s", stored.id, stored.status.value)
        return TransitionResult(event=stored, changed=result.changed)
