"""PostgreSQL repositories backed by asyncpg.

Connection and driver failures are re-raised as
:class:`~medtrack.engine.errors.NetworkError` so the engine can apply its
cache-fallback policy without knowing about asyncpg.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Any

import asyncpg

from medtrack.engine.errors import NetworkError, NotFoundError
from medtrack.engine.models import IntakeEvent, Medicine, frequency_to_dict
from medtrack.storage.base import StockLevels

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
    asyncpg.CannotConnectNowError,
)

_JSONB_COLUMNS = ("frequency_config", "intake_schedules")


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise connection-level failures as NetworkError."""
    try:
        yield
    except _UNAVAILABLE_ERRORS as exc:
        raise NetworkError(f"Database unavailable: {exc}") from exc


def _row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
    """Convert an asyncpg Record to a dict, parsing JSONB strings."""
    d = dict(row)
    for key in _JSONB_COLUMNS:
        if key in d and isinstance(d[key], str):
            d[key] = json.loads(d[key])
    return d


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


async def _deduct_stock(
    conn: asyncpg.Connection, user_id: str, medicine_id: str, amount: float
) -> StockLevels | None:
    """Deduct stock on *conn*, which must be inside a transaction.

    The row lock makes concurrent deductions queue behind each other, and the
    UPDATE is relative to the stored value.
    """
    row = await conn.fetchrow(
        """
        SELECT current_inventory FROM medicines
        WHERE user_id = $1 AND id = $2
        FOR UPDATE
        """,
        user_id,
        medicine_id,
    )
    if row is None:
        raise NotFoundError(f"Medicine {medicine_id} not found")
    previous = row["current_inventory"]
    if previous is None:
        return None
    current = await conn.fetchval(
        """
        UPDATE medicines
        SET current_inventory = GREATEST(current_inventory - $3, 0), updated_at = now()
        WHERE user_id = $1 AND id = $2
        RETURNING current_inventory
        """,
        user_id,
        medicine_id,
        amount,
    )
    return StockLevels(previous, current)


class PostgresMedicineRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_active_medicines(self, user_id: str) -> list[Medicine]:
        with translate_errors():
            rows = await self._pool.fetch(
                "SELECT * FROM medicines WHERE user_id = $1 AND is_active = true ORDER BY name, id",
                user_id,
            )
        return [Medicine.from_dict(_row_to_dict(r)) for r in rows]

    async def get_medicine_by_id(self, user_id: str, medicine_id: str) -> Medicine:
        with translate_errors():
            row = await self._pool.fetchrow(
                "SELECT * FROM medicines WHERE user_id = $1 AND id = $2",
                user_id,
                medicine_id,
            )
        if row is None:
            raise NotFoundError(f"Medicine {medicine_id} not found")
        return Medicine.from_dict(_row_to_dict(row))

    async def save_medicine(self, medicine: Medicine) -> Medicine:
        data = medicine.to_dict()
        frequency = frequency_to_dict(medicine.frequency)
        with translate_errors():
            row = await self._pool.fetchrow(
                """
                INSERT INTO medicines (
                    id, user_id, name, form, frequency_type, frequency_config,
                    intake_schedules, schedule_start, schedule_duration,
                    current_inventory, total_inventory, refill_reminder_threshold,
                    is_active, condition_reason, food_instruction,
                    auto_deduct_inventory, notifications_enabled,
                    missed_dose_threshold_minutes, allow_late_intake,
                    late_intake_window_hours, pause_reason, resume_at
                )
                VALUES (
                    $1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8, $9, $10, $11, $12,
                    $13, $14, $15, $16, $17, $18, $19, $20, $21, $22
                )
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    form = EXCLUDED.form,
                    frequency_type = EXCLUDED.frequency_type,
                    frequency_config = EXCLUDED.frequency_config,
                    intake_schedules = EXCLUDED.intake_schedules,
                    schedule_start = EXCLUDED.schedule_start,
                    schedule_duration = EXCLUDED.schedule_duration,
                    current_inventory = EXCLUDED.current_inventory,
                    total_inventory = EXCLUDED.total_inventory,
                    refill_reminder_threshold = EXCLUDED.refill_reminder_threshold,
                    is_active = EXCLUDED.is_active,
                    condition_reason = EXCLUDED.condition_reason,
                    food_instruction = EXCLUDED.food_instruction,
                    auto_deduct_inventory = EXCLUDED.auto_deduct_inventory,
                    notifications_enabled = EXCLUDED.notifications_enabled,
                    missed_dose_threshold_minutes = EXCLUDED.missed_dose_threshold_minutes,
                    allow_late_intake = EXCLUDED.allow_late_intake,
                    late_intake_window_hours = EXCLUDED.late_intake_window_hours,
                    pause_reason = EXCLUDED.pause_reason,
                    resume_at = EXCLUDED.resume_at,
                    updated_at = now()
                WHERE medicines.user_id = EXCLUDED.user_id
                RETURNING *
                """,
                medicine.id,
                medicine.user_id,
                medicine.name,
                data["form"],
                frequency["frequency_type"],
                json.dumps(frequency["frequency_config"]),
                json.dumps(data["intake_schedules"]),
                medicine.schedule_start,
                medicine.schedule_duration,
                medicine.current_inventory,
                medicine.total_inventory,
                medicine.refill_reminder_threshold,
                medicine.is_active,
                medicine.condition_reason,
                data["food_instruction"],
                medicine.auto_deduct_inventory,
                medicine.notifications_enabled,
                medicine.missed_dose_threshold_minutes,
                medicine.allow_late_intake,
                medicine.late_intake_window_hours,
                medicine.pause_reason,
                medicine.resume_at,
            )
        if row is None:
            raise NotFoundError(f"Medicine {medicine.id} not found")
        return Medicine.from_dict(_row_to_dict(row))

    async def deduct_inventory(
        self, user_id: str, medicine_id: str, amount: float
    ) -> StockLevels | None:
        with translate_errors():
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    return await _deduct_stock(conn, user_id, medicine_id, amount)

    async def set_stock(
        self,
        user_id: str,
        medicine_id: str,
        current_inventory: float,
        total_inventory: float | None,
    ) -> None:
        with translate_errors():
            status = await self._pool.execute(
                """
                UPDATE medicines
                SET current_inventory = $3, total_inventory = $4, updated_at = now()
                WHERE user_id = $1 AND id = $2
                """,
                user_id,
                medicine_id,
                current_inventory,
                total_inventory,
            )
        if status == "UPDATE 0":
            raise NotFoundError(f"Medicine {medicine_id} not found")


_UPSERT_EVENT_SQL = """
    INSERT INTO intake_events (
        id, user_id, medicine_id, medicine_name, scheduled_datetime,
        scheduled_amount, status, actual_datetime, actual_amount,
        skip_reason, note, current_inventory, refill_reminder_threshold,
        food_instruction
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
    ON CONFLICT (id) DO UPDATE SET
        status = EXCLUDED.status,
        actual_datetime = EXCLUDED.actual_datetime,
        actual_amount = EXCLUDED.actual_amount,
        skip_reason = EXCLUDED.skip_reason,
        note = EXCLUDED.note,
        current_inventory = EXCLUDED.current_inventory,
        updated_at = now()
    WHERE intake_events.user_id = EXCLUDED.user_id
    RETURNING *
"""


def _event_args(user_id: str, event: IntakeEvent) -> tuple[Any, ...]:
    return (
        event.id,
        user_id,
        event.medicine_id,
        event.medicine_name,
        event.scheduled_datetime,
        event.scheduled_amount,
        event.status.value,
        event.actual_datetime,
        event.actual_amount,
        event.skip_reason,
        event.note,
        event.current_inventory,
        event.refill_reminder_threshold,
        event.food_instruction.value if event.food_instruction else None,
    )


class PostgresIntakeEventRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_events_for_date(self, user_id: str, day: date) -> list[IntakeEvent]:
        start, end = _day_bounds(day)
        return await self._fetch_between(user_id, start, end)

    async def get_event(self, user_id: str, event_id: str) -> IntakeEvent:
        with translate_errors():
            row = await self._pool.fetchrow(
                "SELECT * FROM intake_events WHERE user_id = $1 AND id = $2",
                user_id,
                event_id,
            )
        if row is None:
            raise NotFoundError(f"Intake event not found: {event_id}")
        return IntakeEvent.from_dict(dict(row))

    async def persist_transition(self, user_id: str, event: IntakeEvent) -> IntakeEvent:
        with translate_errors():
            row = await self._pool.fetchrow(_UPSERT_EVENT_SQL, *_event_args(user_id, event))
        if row is None:
            raise NotFoundError(f"Intake event not found: {event.id}")
        return IntakeEvent.from_dict(dict(row))

    async def persist_take(
        self, user_id: str, event: IntakeEvent, deduct_amount: float | None
    ) -> tuple[IntakeEvent, StockLevels | None]:
        levels = None
        with translate_errors():
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    if deduct_amount is not None:
                        levels = await _deduct_stock(
                            conn, user_id, event.medicine_id, deduct_amount
                        )
                        if levels is not None:
                            event = replace(event, current_inventory=levels.current)
                    row = await conn.fetchrow(_UPSERT_EVENT_SQL, *_event_args(user_id, event))
                    if row is None:
                        # Raising here rolls back the deduction.
                        raise NotFoundError(f"Intake event not found: {event.id}")
        return IntakeEvent.from_dict(dict(row)), levels

    async def _fetch_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[IntakeEvent]:
        with translate_errors():
            rows = await self._pool.fetch(
                """
                SELECT * FROM intake_events
                WHERE user_id = $1 AND scheduled_datetime >= $2 AND scheduled_datetime < $3
                ORDER BY scheduled_datetime, id
                """,
                user_id,
                start,
                end,
            )
        return [IntakeEvent.from_dict(dict(r)) for r in rows]
