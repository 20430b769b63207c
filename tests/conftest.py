"""Shared test fixtures for the medtrack test suite.

- ``make_medicine`` — factory fixture for Medicine instances with sane defaults
- ``clock`` — a settable clock injected into the assembler
- ``medicines`` / ``events`` — in-memory repositories that can be switched
  offline to simulate an unreachable database
- ``postgres_container`` / ``provisioned_postgres_pool`` — Docker-backed
  PostgreSQL for repository tests (skipped by those modules when Docker is
  not available)
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from medtrack.api.deps import Services, build_services
from medtrack.engine.errors import NetworkError
from medtrack.engine.models import Daily, IntakeSchedule, Medicine
from medtrack.storage.memory import (
    InMemoryIntakeEventRepository,
    InMemoryMedicineRepository,
    InMemoryScheduleCache,
)

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

DEFAULT_NOW = datetime(2024, 1, 5, 12, 0)


class FixedClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class SwitchableMedicineRepository(InMemoryMedicineRepository):
    """In-memory medicines that raise NetworkError while ``offline`` is set."""

    offline = False

    def _check(self) -> None:
        if self.offline:
            raise NetworkError("simulated outage")

    async def get_active_medicines(self, user_id: str) -> list[Medicine]:
        self._check()
        return await super().get_active_medicines(user_id)

    async def get_medicine_by_id(self, user_id: str, medicine_id: str) -> Medicine:
        self._check()
        return await super().get_medicine_by_id(user_id, medicine_id)

    async def save_medicine(self, medicine: Medicine) -> Medicine:
        self._check()
        return await super().save_medicine(medicine)

    async def deduct_inventory(self, user_id, medicine_id, amount):
        self._check()
        return await super().deduct_inventory(user_id, medicine_id, amount)

    async def set_stock(self, user_id, medicine_id, current_inventory, total_inventory):
        self._check()
        return await super().set_stock(user_id, medicine_id, current_inventory, total_inventory)


class SwitchableIntakeEventRepository(InMemoryIntakeEventRepository):
    """In-memory events that raise NetworkError while ``offline`` is set."""

    offline = False

    def _check(self) -> None:
        if self.offline:
            raise NetworkError("simulated outage")

    async def get_events_for_date(self, user_id, day):
        self._check()
        return await super().get_events_for_date(user_id, day)

    async def get_event(self, user_id, event_id):
        self._check()
        return await super().get_event(user_id, event_id)

    async def persist_transition(self, user_id, event):
        self._check()
        return await super().persist_transition(user_id, event)

    async def persist_take(self, user_id, event, deduct_amount):
        self._check()
        return await super().persist_take(user_id, event, deduct_amount)


@pytest.fixture
def make_medicine() -> Callable[..., Medicine]:
    """Factory for Medicine instances: DAILY at 08:00, amount 1, untracked stock."""

    def _make(**overrides: Any) -> Medicine:
        fields: dict[str, Any] = {
            "id": f"med-{uuid.uuid4().hex[:8]}",
            "user_id": "u1",
            "name": "Aspirin",
            "frequency": Daily(),
            "intake_schedules": [IntakeSchedule(time="08:00", amount=1.0)],
            "schedule_start": date(2024, 1, 1),
        }
        fields.update(overrides)
        return Medicine(**fields)

    return _make


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def medicines() -> SwitchableMedicineRepository:
    return SwitchableMedicineRepository()


@pytest.fixture
def events(medicines) -> SwitchableIntakeEventRepository:
    return SwitchableIntakeEventRepository(medicines=medicines)


@pytest.fixture
def cache() -> InMemoryScheduleCache:
    return InMemoryScheduleCache()


@pytest.fixture
def services(medicines, events, cache, clock) -> Services:
    """Engine services over the in-memory repositories and fixed clock."""
    return build_services(medicines, events, cache=cache, clock=clock)


# ---------------------------------------------------------------------------
# PostgreSQL (testcontainers)
# ---------------------------------------------------------------------------


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Shared Postgres testcontainer for all DB-backed tests in this pytest session.

    Each ``provisioned_postgres_pool`` usage creates a new database with a
    random name, so rows never leak between tests.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
def provisioned_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Create a fresh, migrated database and asyncpg pool for a single test usage.

    Tests should use this as:
        async with provisioned_postgres_pool() as pool:
            ...
    """
    from medtrack.db import Database
    from medtrack.migrations import run_migrations

    @asynccontextmanager
    async def _provision(
        *,
        min_pool_size: int = 1,
        max_pool_size: int = 3,
    ) -> AsyncIterator[Pool]:
        db = Database(
            db_name=_unique_test_db_name(),
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=min_pool_size,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        await run_migrations(db.url)
        pool = await db.connect()
        try:
            yield pool
        finally:
            await db.close()

    return _provision
