"""
Domain exceptions for the availability and booking engine.

Services raise these; the application factory renders them as JSON with the
status code each class carries.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class SchedulingError(Exception):
    """Base class for every error the engine reports to callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "scheduling_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(SchedulingError):
    """Malformed input, inverted or past time ranges."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class AuthError(SchedulingError):
    """Unauthenticated mutation."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "authentication_required"


class NotFoundError(SchedulingError):
    """Unknown instructor, appointment type, template, block, booking or resource id."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(SchedulingError):
    """The slot is no longer free, or a state transition is not allowed."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class WebhookIdentityError(ConflictError):
    """A push notification whose channel does not match the stored subscription."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "channel_mismatch"


class UpstreamError(SchedulingError):
    """External calendar provider failure."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "upstream_error"


class CalendarAccessRevokedError(UpstreamError):
    default_code = "calendar_access_revoked"


def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "loc": list(error.get("loc", ())),
            "msg": str(error.get("msg", "")),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request parameters",
            "code": ValidationError.default_code,
            "errors": errors,
        },
    )
