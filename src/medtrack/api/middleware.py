"""API error handling — consistent error responses.

Registers FastAPI exception handlers that convert engine exceptions into
standardised ``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``InvalidTransitionError`` → 409 Conflict
- ``IntakeValidationError`` → 422 Unprocessable Entity
- ``ConfigurationError`` / ``UnsupportedFrequencyError`` → 422
- ``NotFoundError`` → 404 Not Found
- ``NetworkError`` → 503 Service Unavailable
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from medtrack.api.models import ErrorDetail, ErrorResponse
from medtrack.engine.errors import (
    ConfigurationError,
    IntakeValidationError,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    UnsupportedFrequencyError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=str(exc)))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_invalid_transition(
    request: Request,
    exc: InvalidTransitionError,
) -> JSONResponse:
    logger.info("Rejected transition on %s: %s", request.url.path, exc)
    return _error(409, "INVALID_TRANSITION", exc)


async def _handle_intake_validation(
    request: Request,
    exc: IntakeValidationError,
) -> JSONResponse:
    logger.info("Invalid intake arguments on %s: %s", request.url.path, exc)
    return _error(422, "VALIDATION_ERROR", exc)


async def _handle_configuration(
    request: Request,
    exc: ConfigurationError | UnsupportedFrequencyError,
) -> JSONResponse:
    logger.warning("Medicine configuration error on %s: %s", request.url.path, exc)
    return _error(422, "CONFIGURATION_ERROR", exc)


async def _handle_not_found(
    request: Request,
    exc: NotFoundError,
) -> JSONResponse:
    logger.info("Not found: %s", exc)
    return _error(404, "NOT_FOUND", exc)


async def _handle_network(
    request: Request,
    exc: NetworkError,
) -> JSONResponse:
    """Return 503 when the data source is unreachable (writes only; reads fall back)."""
    logger.warning("Data source unavailable on %s", request.url.path, exc_info=exc)
    return _error(503, "UNAVAILABLE", exc)


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            body = ErrorResponse(
                error=ErrorDetail(
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                )
            )
            return JSONResponse(status_code=500, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Starlette resolves handlers along the exception's MRO, so the
    ``IntakeValidationError`` handler wins over its ``InvalidTransitionError``
    parent.
    """
    app.add_exception_handler(InvalidTransitionError, _handle_invalid_transition)  # type: ignore[arg-type]
    app.add_exception_handler(IntakeValidationError, _handle_intake_validation)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigurationError, _handle_configuration)  # type: ignore[arg-type]
    app.add_exception_handler(UnsupportedFrequencyError, _handle_configuration)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundError, _handle_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(NetworkError, _handle_network)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
