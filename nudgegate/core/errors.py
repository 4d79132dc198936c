"""
Custom exception hierarchy for the governance service.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

Only boundary problems (bad input, missing records, illegal manual
transitions) are exceptions. Insufficient data inside the engine degrades
to a documented fallback instead of raising.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class NudgeGateException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingUserIdError(NudgeGateException):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "MISSING_USER_ID"

    def __init__(self):
        super().__init__(message="Request is missing the authenticated X-User-Id header.")


class InvalidTimezoneError(NudgeGateException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_TIMEZONE"

    def __init__(self, timezone: str):
        super().__init__(
            message=f"Unknown IANA timezone: {timezone!r}.",
            details={"timezone": timezone},
        )


class MemoryNotFoundError(NudgeGateException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "MEMORY_NOT_FOUND"

    def __init__(self, memory_id: int):
        super().__init__(
            message=f"Memory {memory_id} not found.",
            details={"id": memory_id},
        )


class RecoveryNotFoundError(NudgeGateException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "RECOVERY_NOT_FOUND"

    def __init__(self, day: str):
        super().__init__(
            message=f"No recovery score stored for {day}.",
            details={"day": day},
        )


class NudgeNotFoundError(NudgeGateException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NUDGE_NOT_FOUND"

    def __init__(self, nudge_id: str):
        super().__init__(
            message=f"No governance decision recorded for nudge {nudge_id!r}.",
            details={"nudge_id": nudge_id},
        )


class MVDAlreadyActiveError(NudgeGateException):
    http_status = status.HTTP_409_CONFLICT
    code = "MVD_ALREADY_ACTIVE"

    def __init__(self, mvd_type: str | None, trigger: str | None):
        super().__init__(
            message="Minimum Viable Day mode is already active.",
            details={"mvd_type": mvd_type, "trigger": trigger},
        )


class MVDNotActiveError(NudgeGateException):
    http_status = status.HTTP_409_CONFLICT
    code = "MVD_NOT_ACTIVE"

    def __init__(self):
        super().__init__(message="Minimum Viable Day mode is not active.")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def nudgegate_exception_handler(request: Request, exc: NudgeGateException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
