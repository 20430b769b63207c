"""Intake event state machine.

::

    SCHEDULED ──take──▶ TAKEN
        │  └────skip──▶ SKIPPED
        └──mark_missed─▶ MISSED ──take/skip──▶ TAKEN / SKIPPED

TAKEN and SKIPPED are terminal.  ``mark_missed`` on an already MISSED event
is a no-op.  Every transition applies to exactly one event and returns a new
instance; the input event is never mutated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, time

from medtrack.engine import inventory
from medtrack.engine.errors import IntakeValidationError, InvalidTransitionError
from medtrack.engine.inventory import InventoryChange
from medtrack.engine.models import IntakeEvent, IntakeStatus, Medicine

logger = logging.getLogger(__name__)

_VALID_TRANSITIONS: dict[IntakeStatus, set[IntakeStatus]] = {
    IntakeStatus.SCHEDULED: {IntakeStatus.TAKEN, IntakeStatus.SKIPPED, IntakeStatus.MISSED},
    IntakeStatus.MISSED: {IntakeStatus.TAKEN, IntakeStatus.SKIPPED},
    IntakeStatus.TAKEN: set(),
    IntakeStatus.SKIPPED: set(),
}


@dataclass(frozen=True)
class TransitionResult:
    """The transitioned event plus any inventory effect it caused."""

    event: IntakeEvent
    inventory: InventoryChange | None = None
    changed: bool = True

    @property
    def crossed_threshold(self) -> bool:
        return self.inventory is not None and self.inventory.crossed_threshold


def validate_transition(current: IntakeStatus, target: IntakeStatus) -> None:
    """Validate that a status transition is allowed.

    Raises InvalidTransitionError if the transition is not in the valid set.
    """
    valid = _VALID_TRANSITIONS.get(current, set())
    if target not in valid:
        raise InvalidTransitionError(f"Cannot transition from '{current.value}' to '{target.value}'")


def take(
    event: IntakeEvent,
    medicine: Medicine,
    actual_datetime: datetime,
    actual_amount: float | None = None,
    deduct_from_inventory: bool = True,
    note: str | None = None,
) -> TransitionResult:
    """Record *event* as taken.

    *actual_amount* defaults to the scheduled amount.  When
    *deduct_from_inventory* is set and the medicine tracks stock, the amount
    is deducted and the resulting :class:`InventoryChange` is returned for the
    caller to persist.
    """
    validate_transition(event.status, IntakeStatus.TAKEN)
    if event.medicine_id != medicine.id:
        raise IntakeValidationError(
            f"Event {event.id} belongs to medicine {event.medicine_id}, not {medicine.id}"
        )
    if event.status is IntakeStatus.MISSED and not medicine.allow_late_intake:
        raise InvalidTransitionError(
            f"Medicine {medicine.id} does not allow taking missed doses late"
        )

    amount = event.scheduled_amount if actual_amount is None else actual_amount
    if amount <= 0:
        raise IntakeValidationError(f"Dosage amount must be positive, got {amount}")
    if actual_datetime < datetime.combine(medicine.schedule_start, time.min):
        raise IntakeValidationError(
            f"Take time {actual_datetime.isoformat()} is before the medicine's start "
            f"{medicine.schedule_start.isoformat()}"
        )

    change = None
    if deduct_from_inventory and medicine.tracks_inventory:
        change = inventory.deduct(medicine, amount)

    taken = replace(
        event,
        status=IntakeStatus.TAKEN,
        actual_datetime=actual_datetime,
        actual_amount=amount,
        note=note if note is not None else event.note,
        current_inventory=(
            change.new_current_inventory if change is not None else event.current_inventory
        ),
    )
    return TransitionResult(event=taken, inventory=change)


def skip(event: IntakeEvent, reason: str, note: str | None = None) -> TransitionResult:
    """Record *event* as skipped.  A non-empty reason is required."""
    validate_transition(event.status, IntakeStatus.SKIPPED)
    if reason is None or not reason.strip():
        raise IntakeValidationError("Skip reason is required")

    skipped = replace(
        event,
        status=IntakeStatus.SKIPPED,
        skip_reason=reason.strip(),
        note=note if note is not None else event.note,
    )
    return TransitionResult(event=skipped)


def mark_missed(event: IntakeEvent) -> TransitionResult:
    """Mark *event* missed; idempotent when it is already MISSED."""
    if event.status is IntakeStatus.MISSED:
        return TransitionResult(event=event, changed=False)
    validate_transition(event.status, IntakeStatus.MISSED)
    return TransitionResult(event=replace(event, status=IntakeStatus.MISSED))
