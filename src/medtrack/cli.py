"""CLI for medtrack — inspect schedules, run maintenance, serve the API."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

import click

from medtrack import __version__
from medtrack.api.deps import Services, build_postgres_services
from medtrack.config import ConfigError, MedtrackConfig, load_config
from medtrack.core.logging import configure_logging
from medtrack.db import Database
from medtrack.engine.models import DailyMedicineSchedule, IntakeEvent

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _open_services(config: MedtrackConfig) -> AsyncIterator[Services]:
    """Connect to PostgreSQL for the duration of one command."""
    db = Database.from_env(config.db_name, schema=config.db_schema)
    await db.connect()
    try:
        yield build_postgres_services(db, config)
    finally:
        await db.close()


def _event_line(event: IntakeEvent) -> str:
    when = event.scheduled_datetime.strftime("%Y-%m-%d %H:%M")
    return (
        f"{when:<17} {event.medicine_name:<24} {event.scheduled_amount:>6g} "
        f"{event.display_status.value:<10} {event.id}"
    )


def _print_schedule(schedule: DailyMedicineSchedule) -> None:
    if not schedule.available:
        click.echo(f"{schedule.date}: schedule unavailable (database unreachable, no cached copy)")
        return
    suffix = " (cached)" if schedule.from_cache else ""
    click.echo(
        f"{schedule.date}{suffix}: {schedule.total_scheduled} scheduled, "
        f"{schedule.total_taken} taken, {schedule.total_skipped} skipped, "
        f"{schedule.total_missed} missed, {schedule.total_pending} pending"
    )
    for event in schedule.intake_events:
        click.echo(f"  {_event_line(event)}")
    for warning in schedule.warnings:
        click.echo(f"  warning: {warning.medicine_name}: {warning.message}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to medtrack.toml (or its directory)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """medtrack — medicine schedules, intake tracking and refill alerts."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    ctx.obj = config


@cli.command()
@click.argument("user_id")
@click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Date to show (YYYY-MM-DD); default today",
)
@click.option("--week", is_flag=True, help="Show seven days starting at --date")
@click.pass_obj
def schedule(config: MedtrackConfig, user_id: str, day, week: bool) -> None:
    """Print the intake schedule for USER_ID."""

    async def _run() -> None:
        async with _open_services(config) as services:
            start = day.date() if day is not None else services.assembler.now().date()
            if week:
                for daily in await services.assembler.build_weekly_schedule(user_id, start):
                    _print_schedule(daily)
            else:
                _print_schedule(await services.assembler.build_daily_schedule(user_id, start))

    asyncio.run(_run())


@cli.command()
@click.argument("user_id")
@click.option("--hours", type=click.IntRange(min=1), default=None, help="Look-ahead window")
@click.pass_obj
def upcoming(config: MedtrackConfig, user_id: str, hours: int | None) -> None:
    """List scheduled doses due soon for USER_ID."""
    horizon = timedelta(hours=hours or config.schedule.upcoming_horizon_hours)

    async def _run() -> list[IntakeEvent]:
        async with _open_services(config) as services:
            return await services.assembler.get_upcoming_dose_instants(user_id, horizon)

    events = asyncio.run(_run())
    if not events:
        click.echo("No upcoming doses")
        return
    for event in events:
        click.echo(_event_line(event))


@cli.command("process-missed")
@click.argument("user_id")
@click.pass_obj
def process_missed(config: MedtrackConfig, user_id: str) -> None:
    """Mark overdue scheduled doses of USER_ID as missed."""

    async def _run():
        async with _open_services(config) as services:
            return await services.intake.process_missed_doses(user_id)

    outcome = asyncio.run(_run())
    click.echo(f"Marked {outcome.processed} dose(s) missed")
    for error in outcome.errors:
        click.echo(f"  error: {error}")
    if not outcome.success:
        sys.exit(1)


@cli.command()
@click.pass_obj
def migrate(config: MedtrackConfig) -> None:
    """Create the database if needed and apply the schema migrations."""
    from medtrack.migrations import run_migrations

    db = Database.from_env(config.db_name, schema=config.db_schema)

    async def _run() -> None:
        await db.provision()
        await run_migrations(db.url, schema=config.db_schema)

    asyncio.run(_run())
    click.echo(f"Database {config.db_name} is up to date")


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.pass_obj
def serve(config: MedtrackConfig, host: str | None, port: int | None) -> None:
    """Serve the medtrack HTTP API."""
    import uvicorn

    from medtrack.api.app import create_app

    host = host or config.host
    port = port or config.port
    click.echo(f"Starting medtrack API on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

