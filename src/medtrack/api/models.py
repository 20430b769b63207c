"""Pydantic request/response models for the medtrack API.

Responses follow ``{"data": T, "meta": {...}}``; errors follow
``{"error": {"code": "...", "message": "..."}}``.  Domain dataclasses are
converted with ``Model.model_validate(obj.to_dict())``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper."""

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class IntakeEventModel(BaseModel):
    """One dose slot as shown to clients; ``display_status`` may be PAUSED."""

    id: str
    user_id: str
    medicine_id: str
    medicine_name: str
    scheduled_datetime: str
    scheduled_amount: float
    status: str
    display_status: str
    actual_datetime: str | None = None
    actual_amount: float | None = None
    skip_reason: str | None = None
    note: str | None = None
    current_inventory: float | None = None
    refill_reminder_threshold: float | None = None
    food_instruction: str | None = None
    can_take_late: bool = False
    paused: bool = False


class ScheduleWarningModel(BaseModel):
    medicine_id: str
    medicine_name: str
    error_type: str
    message: str


class DailyScheduleModel(BaseModel):
    date: str
    intake_events: list[IntakeEventModel] = []
    total_scheduled: int = 0
    total_taken: int = 0
    total_skipped: int = 0
    total_missed: int = 0
    total_pending: int = 0
    warnings: list[ScheduleWarningModel] = []
    available: bool = True
    from_cache: bool = False


class WeeklyStatsModel(BaseModel):
    week_start_date: str = ""
    week_end_date: str = ""
    daily_schedules: list[DailyScheduleModel] = []
    total_scheduled: int = 0
    total_taken: int = 0
    total_skipped: int = 0
    total_missed: int = 0
    adherence_rate: int = 0
    best_day: str = ""
    worst_day: str = ""


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TakeRequest(BaseModel):
    """Body of POST .../take.  Omitted fields use the scheduled values."""

    actual_datetime: str | None = None
    actual_amount: float | None = None
    note: str | None = None
    deduct_from_inventory: bool | None = None


class SkipRequest(BaseModel):
    reason: str
    note: str | None = None


class InventoryChangeModel(BaseModel):
    medicine_id: str
    previous_inventory: float | None = None
    new_current_inventory: float | None = None
    crossed_threshold: bool = False


class TransitionModel(BaseModel):
    """Result of a take / skip / miss call."""

    event: IntakeEventModel
    inventory: InventoryChangeModel | None = None
    changed: bool = True
    crossed_threshold: bool = False


class MaintenanceModel(BaseModel):
    processed: int = 0
    errors: list[str] = []
    success: bool = True


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class InventoryUpdateRequest(BaseModel):
    """Body of PUT .../inventory: set an amount or refill to total."""

    new_amount: float | None = None
    reset_to_full: bool = False


class MedicineSummary(BaseModel):
    id: str
    name: str
    form: str
    current_inventory: float | None = None
    total_inventory: float | None = None
    refill_reminder_threshold: float
