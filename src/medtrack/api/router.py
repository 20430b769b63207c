"""medtrack endpoints.

Schedule reads, intake transitions, missed-dose maintenance and inventory
updates for one user.  Reads never fail on an unreachable database (they fall
back to the schedule cache); writes surface it as 503.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from medtrack.api.deps import Services
from medtrack.api.models import (
    ApiResponse,
    DailyScheduleModel,
    InventoryChangeModel,
    InventoryUpdateRequest,
    IntakeEventModel,
    MaintenanceModel,
    MedicineSummary,
    SkipRequest,
    TakeRequest,
    TransitionModel,
    WeeklyStatsModel,
)
from medtrack.core.logging import set_user_context
from medtrack.engine.intake import TransitionResult
from medtrack.engine.stats import weekly_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/medtrack", tags=["medtrack"])


def _get_services() -> Services:
    """Dependency stub — overridden at app startup or in tests."""
    raise RuntimeError("Services not initialized")


def _user(user_id: str) -> str:
    """Bind the path's user id to the logging context."""
    set_user_context(user_id)
    return user_id


def _parse_local_datetime(value: str) -> datetime:
    """Parse an ISO timestamp into naive local time.

    Raises HTTPException 422 on malformed input.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid datetime: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _transition(result: TransitionResult) -> TransitionModel:
    return TransitionModel(
        event=IntakeEventModel.model_validate(result.event.to_dict()),
        inventory=(
            InventoryChangeModel.model_validate(result.inventory.to_dict())
            if result.inventory is not None
            else None
        ),
        changed=result.changed,
        crossed_threshold=result.crossed_threshold,
    )


# ---------------------------------------------------------------------------
# GET /users/{user_id}/schedule
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/schedule", response_model=ApiResponse[DailyScheduleModel])
async def get_schedule(
    day: date | None = Query(None, alias="date", description="Date (YYYY-MM-DD); default today"),
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[DailyScheduleModel]:
    """Build the schedule for one date."""
    day = day or services.assembler.now().date()
    schedule = await services.assembler.build_daily_schedule(user_id, day)
    return ApiResponse[DailyScheduleModel](
        data=DailyScheduleModel.model_validate(schedule.to_dict())
    )


@router.get("/users/{user_id}/schedule/week", response_model=ApiResponse[WeeklyStatsModel])
async def get_week(
    start: date | None = Query(None, description="First day of the week; default today"),
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[WeeklyStatsModel]:
    """Seven daily schedules with adherence statistics."""
    start = start or services.assembler.now().date()
    schedules = await services.assembler.build_weekly_schedule(user_id, start)
    stats = weekly_stats(schedules)
    return ApiResponse[WeeklyStatsModel](data=WeeklyStatsModel.model_validate(stats.to_dict()))


# ---------------------------------------------------------------------------
# GET /users/{user_id}/upcoming, /overdue
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/upcoming", response_model=ApiResponse[list[IntakeEventModel]])
async def get_upcoming(
    hours: int | None = Query(None, ge=1, le=24 * 14),
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[list[IntakeEventModel]]:
    """Scheduled doses due within the next *hours* (configured default when omitted)."""
    hours = hours or services.config.schedule.upcoming_horizon_hours
    events = await services.assembler.get_upcoming_dose_instants(
        user_id, timedelta(hours=hours)
    )
    return ApiResponse[list[IntakeEventModel]](
        data=[IntakeEventModel.model_validate(e.to_dict()) for e in events]
    )


@router.get("/users/{user_id}/overdue", response_model=ApiResponse[list[IntakeEventModel]])
async def get_overdue(
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[list[IntakeEventModel]]:
    """Scheduled doses past their missed-dose threshold."""
    events = await services.assembler.get_overdue_intakes(
        user_id, lookback_days=services.config.schedule.overdue_lookback_days
    )
    return ApiResponse[list[IntakeEventModel]](
        data=[IntakeEventModel.model_validate(e.to_dict()) for e in events]
    )


# ---------------------------------------------------------------------------
# POST /users/{user_id}/events/{event_id}/take|skip|miss
# ---------------------------------------------------------------------------


@router.post(
    "/users/{user_id}/events/{event_id}/take", response_model=ApiResponse[TransitionModel]
)
async def take_event(
    event_id: str,
    body: TakeRequest | None = None,
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[TransitionModel]:
    """Record a dose as taken, deducting stock when configured."""
    body = body or TakeRequest()
    actual = _parse_local_datetime(body.actual_datetime) if body.actual_datetime else None
    result = await services.intake.take(
        user_id,
        event_id,
        actual_datetime=actual,
        actual_amount=body.actual_amount,
        note=body.note,
        deduct_from_inventory=body.deduct_from_inventory,
    )
    return ApiResponse[TransitionModel](data=_transition(result))


@router.post(
    "/users/{user_id}/events/{event_id}/skip", response_model=ApiResponse[TransitionModel]
)
async def skip_event(
    event_id: str,
    body: SkipRequest,
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[TransitionModel]:
    """Record a dose as skipped; a non-blank reason is required."""
    result = await services.intake.skip(user_id, event_id, body.reason, note=body.note)
    return ApiResponse[TransitionModel](data=_transition(result))


@router.post(
    "/users/{user_id}/events/{event_id}/miss", response_model=ApiResponse[TransitionModel]
)
async def miss_event(
    event_id: str,
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[TransitionModel]:
    result = await services.intake.mark_missed(user_id, event_id)
    return ApiResponse[TransitionModel](data=_transition(result))


@router.post("/users/{user_id}/process-missed", response_model=ApiResponse[MaintenanceModel])
async def process_missed(
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[MaintenanceModel]:
    """Mark every overdue scheduled dose as missed."""
    outcome = await services.intake.process_missed_doses(user_id)
    return ApiResponse[MaintenanceModel](data=MaintenanceModel.model_validate(outcome.to_dict()))


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/inventory/low", response_model=ApiResponse[list[MedicineSummary]])
async def get_low_inventory(
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[list[MedicineSummary]]:
    """Active medicines at or below their refill threshold, lowest stock first."""
    medicines = await services.ledger.low_inventory(user_id)
    return ApiResponse[list[MedicineSummary]](
        data=[MedicineSummary.model_validate(m.to_dict()) for m in medicines]
    )


@router.put(
    "/users/{user_id}/medicines/{medicine_id}/inventory",
    response_model=ApiResponse[InventoryChangeModel],
)
async def update_inventory(
    medicine_id: str,
    body: InventoryUpdateRequest,
    user_id: str = Depends(_user),
    services: Services = Depends(_get_services),
) -> ApiResponse[InventoryChangeModel]:
    """Set the stock to ``new_amount`` or refill it to the total."""
    if body.reset_to_full:
        change = await services.ledger.reset_to_full(user_id, medicine_id)
    elif body.new_amount is not None:
        change = await services.ledger.update_inventory(user_id, medicine_id, body.new_amount)
    else:
        raise HTTPException(status_code=422, detail="Provide new_amount or reset_to_full")
    logger.info("Inventory for %s set to %s", medicine_id, change.new_current_inventory)
    return ApiResponse[InventoryChangeModel](
        data=InventoryChangeModel.model_validate(change.to_dict())
    )
