"""Schedule cache backed by the PostgreSQL JSONB ``state`` table.

Entries are keyed ``daily_schedule_<user_id>_<YYYY-MM-DD>`` and overwritten
wholesale on every put; there are no partial updates.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any

import asyncpg

from medtrack.engine.models import DailyMedicineSchedule
from medtrack.storage.postgres import translate_errors

logger = logging.getLogger(__name__)


def schedule_cache_key(user_id: str, day: date) -> str:
    return f"daily_schedule_{user_id}_{day.isoformat()}"


def decode_jsonb(val: Any) -> Any:
    """Decode a JSONB value, handling potential double-encoding.

    asyncpg returns JSONB columns as Python strings (text representation)
    when no custom codec is registered.  Normally one ``json.loads`` pass
    suffices.  If the stored JSONB was double-encoded (a JSON string
    containing JSON text), a second pass is needed.
    """
    if not isinstance(val, str):
        return val
    val = json.loads(val)
    if isinstance(val, str):
        logger.warning("Double-encoded JSONB detected; applying second decode pass")
        try:
            val = json.loads(val)
        except (json.JSONDecodeError, ValueError):
            pass
    return val


async def state_get(pool: asyncpg.Pool, key: str) -> Any | None:
    """Return the JSONB value for *key*, or ``None`` if the key does not exist."""
    with translate_errors():
        row = await pool.fetchval("SELECT value FROM state WHERE key = $1", key)
    if row is None:
        return None
    return decode_jsonb(row)


async def state_set(pool: asyncpg.Pool, key: str, value: Any) -> int:
    """Upsert *key* with *value* and return the row's new version."""
    with translate_errors():
        return await pool.fetchval(
            """
            INSERT INTO state (key, value, updated_at, version)
            VALUES ($1, $2::jsonb, now(), 1)
            ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value,
                    updated_at = now(),
                    version = state.version + 1
            RETURNING version
            """,
            key,
            json.dumps(value),
        )


class PostgresScheduleCache:
    """ScheduleCache over the ``state`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, user_id: str, day: date) -> DailyMedicineSchedule | None:
        value = await state_get(self._pool, schedule_cache_key(user_id, day))
        if value is None:
            return None
        return DailyMedicineSchedule.from_dict(value)

    async def put(self, user_id: str, day: date, schedule: DailyMedicineSchedule) -> None:
        await state_set(self._pool, schedule_cache_key(user_id, day), schedule.to_dict())
