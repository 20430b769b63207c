"""Inventory ledger — stock tracking, deductions and refill-threshold alerts.

The refill alert is edge-triggered: ``crossed_threshold`` is True only on the
deduction that takes stock from above the threshold to at-or-below it.
Further deductions while already below the threshold do not re-alert.

Medicines with ``current_inventory is None`` are untracked; every operation on
them is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace

from medtrack.engine.errors import IntakeValidationError
from medtrack.engine.models import Medicine
from medtrack.storage.base import MedicineRepository, StockLevels

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InventoryChange:
    """Outcome of a stock mutation.

    ``medicine`` is the updated copy; the input medicine is left untouched.
    """

    medicine: Medicine
    previous_inventory: float | None
    new_current_inventory: float | None
    crossed_threshold: bool = False

    @property
    def tracked(self) -> bool:
        return self.new_current_inventory is not None

    def to_dict(self) -> dict:
        return {
            "medicine_id": self.medicine.id,
            "previous_inventory": self.previous_inventory,
            "new_current_inventory": self.new_current_inventory,
            "crossed_threshold": self.crossed_threshold,
        }


def applied_deduction(medicine: Medicine, levels: StockLevels) -> InventoryChange:
    """The change described by stock *levels* before and after a deduction."""
    return InventoryChange(
        medicine=replace(medicine, current_inventory=levels.current),
        previous_inventory=levels.previous,
        new_current_inventory=levels.current,
        crossed_threshold=levels.current <= medicine.refill_reminder_threshold < levels.previous,
    )


def deduct(medicine: Medicine, amount: float) -> InventoryChange:
    """Deduct *amount* from *medicine*'s stock, flooring at zero."""
    previous = medicine.current_inventory
    if previous is None:
        return InventoryChange(medicine=medicine, previous_inventory=None, new_current_inventory=None)
    if amount < 0:
        raise IntakeValidationError(f"Deduction amount must not be negative, got {amount}")
    return applied_deduction(medicine, StockLevels(previous, max(previous - amount, 0.0)))


def set_inventory(medicine: Medicine, new_amount: float) -> InventoryChange:
    """Set stock to *new_amount* (a manual count or refill)."""
    if new_amount < 0:
        raise IntakeValidationError("Inventory amount cannot be negative")
    total = medicine.total_inventory
    if total is None or new_amount > total:
        total = new_amount
    return InventoryChange(
        medicine=replace(medicine, current_inventory=new_amount, total_inventory=total),
        previous_inventory=medicine.current_inventory,
        new_current_inventory=new_amount,
    )


def reset_to_full(medicine: Medicine) -> InventoryChange:
    """Refill stock back to ``total_inventory``."""
    if medicine.total_inventory is None:
        return InventoryChange(
            medicine=medicine,
            previous_inventory=medicine.current_inventory,
            new_current_inventory=medicine.current_inventory,
        )
    return set_inventory(medicine, medicine.total_inventory)


def is_low(medicine: Medicine) -> bool:
    """True when a tracked medicine is at or below its refill threshold."""
    if medicine.current_inventory is None:
        return False
    return medicine.current_inventory <= medicine.refill_reminder_threshold


def low_inventory(medicines: Iterable[Medicine]) -> list[Medicine]:
    """Medicines needing a refill, lowest stock first."""
    return sorted((m for m in medicines if is_low(m)), key=lambda m: m.current_inventory or 0.0)


class InventoryLedger:
    """Applies stock mutations through a MedicineRepository.

    Deductions are relative updates applied by the store.  Manual counts and
    refills write only the stock columns.
    """

    def __init__(self, medicines: MedicineRepository) -> None:
        self._medicines = medicines

    async def deduct(self, user_id: str, medicine_id: str, amount: float) -> InventoryChange:
        if amount < 0:
            raise IntakeValidationError(f"Deduction amount must not be negative, got {amount}")
        medicine = await self._medicines.get_medicine_by_id(user_id, medicine_id)
        levels = await self._medicines.deduct_inventory(user_id, medicine_id, amount)
        if levels is None:
            return InventoryChange(medicine=medicine, previous_inventory=None, new_current_inventory=None)
        return self.record_deduction(medicine, levels)

    def record_deduction(self, medicine: Medicine, levels: StockLevels) -> InventoryChange:
        """Build the change for a deduction the store has already applied."""
        change = applied_deduction(medicine, levels)
        if change.crossed_threshold:
            logger.info(
                "Medicine %s crossed refill threshold (%s left, threshold %s)",
                medicine.id,
                change.new_current_inventory,
                medicine.refill_reminder_threshold,
            )
        return change

    async def update_inventory(
        self, user_id: str, medicine_id: str, new_amount: float
    ) -> InventoryChange:
        medicine = await self._medicines.get_medicine_by_id(user_id, medicine_id)
        return await self._write_stock(user_id, set_inventory(medicine, new_amount))

    async def reset_to_full(self, user_id: str, medicine_id: str) -> InventoryChange:
        medicine = await self._medicines.get_medicine_by_id(user_id, medicine_id)
        if medicine.total_inventory is None:
            return reset_to_full(medicine)
        return await self._write_stock(user_id, reset_to_full(medicine))

    async def low_inventory(self, user_id: str) -> list[Medicine]:
        return low_inventory(await self._medicines.get_active_medicines(user_id))

    async def _write_stock(self, user_id: str, change: InventoryChange) -> InventoryChange:
        await self._medicines.set_stock(
            user_id,
            change.medicine.id,
            change.new_current_inventory,
            change.medicine.total_inventory,
        )
        return change
