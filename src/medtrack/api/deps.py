"""Dependency wiring for the medtrack API.

The router declares ``_get_services`` as a stub dependency;
:func:`wire_dependencies` overrides it with :func:`get_services`, which
returns the module-level :class:`Services` created by :func:`init_services`
during app startup.  Tests override the stub directly with in-memory services.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import FastAPI

from medtrack.config import CacheBackend, MedtrackConfig
from medtrack.db import Database
from medtrack.engine.inventory import InventoryLedger
from medtrack.engine.schedule import Clock, ScheduleAssembler
from medtrack.engine.service import IntakeService
from medtrack.storage.base import IntakeEventRepository, MedicineRepository, ScheduleCache
from medtrack.storage.cache import PostgresScheduleCache
from medtrack.storage.memory import InMemoryScheduleCache
from medtrack.storage.postgres import PostgresIntakeEventRepository, PostgresMedicineRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The engine objects one process shares across requests."""

    assembler: ScheduleAssembler
    intake: IntakeService
    ledger: InventoryLedger
    config: MedtrackConfig = field(default_factory=MedtrackConfig)


def build_services(
    medicines: MedicineRepository,
    events: IntakeEventRepository,
    cache: ScheduleCache | None = None,
    config: MedtrackConfig | None = None,
    clock: Clock = datetime.now,
) -> Services:
    """Assemble the engine over the given repositories."""
    config = config or MedtrackConfig()
    assembler = ScheduleAssembler(
        medicines,
        events,
        cache=cache,
        clock=clock,
        default_missed_dose_threshold_minutes=(
            config.schedule.default_missed_dose_threshold_minutes
        ),
    )
    ledger = InventoryLedger(medicines)
    return Services(
        assembler=assembler,
        intake=IntakeService(assembler, ledger),
        ledger=ledger,
        config=config,
    )


def build_postgres_services(db: Database, config: MedtrackConfig) -> Services:
    """Services over a connected :class:`Database`."""
    if db.pool is None:
        raise RuntimeError(f"Database '{db.db_name}' has no active connection pool")
    if config.cache.backend is CacheBackend.MEMORY:
        cache: ScheduleCache = InMemoryScheduleCache()
    else:
        cache = PostgresScheduleCache(db.pool)
    return build_services(
        PostgresMedicineRepository(db.pool),
        PostgresIntakeEventRepository(db.pool),
        cache=cache,
        config=config,
    )


_services: Services | None = None
_database: Database | None = None


async def init_services(config: MedtrackConfig) -> Services:
    """Connect to PostgreSQL and create the Services singleton.

    Called once during app startup (in the lifespan handler).
    """
    global _services, _database  # noqa: PLW0603

    db = Database.from_env(config.db_name, schema=config.db_schema)
    await db.provision()
    await db.connect()
    _database = db
    _services = build_postgres_services(db, config)
    return _services


async def shutdown_services() -> None:
    """Close the pool and drop the singleton. Called during app shutdown."""
    global _services, _database  # noqa: PLW0603

    if _database is not None:
        await _database.close()
        _database = None
    _services = None


def get_services() -> Services:
    """FastAPI dependency: provides the Services singleton."""
    if _services is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _services


def wire_dependencies(app: FastAPI) -> None:
    """Override the router's ``_get_services`` stub with the singleton."""
    from medtrack.api import router

    app.dependency_overrides[router._get_services] = get_services
    logger.debug("Wired services dependency for %s", router.__name__)
