"""
Typed access-control errors and their single HTTP mapping.

Every error carries an HTTP status and a stable machine-readable ``code``.
Route handlers raise these; ``register_exception_handlers`` renders them with
the same envelope the CSRF middleware uses:

    {"error": {"code": "FORBIDDEN", "message": "...", "status": 403}}
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

log = structlog.get_logger()


class EchoError(Exception):
    """Base class for errors that map to a client-visible HTTP response."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------

class Unauthenticated(EchoError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class MissingApiKey(Unauthenticated):
    code = "MISSING_API_KEY"
    message = "API key is required"


class InvalidApiKey(Unauthenticated):
    code = "INVALID_API_KEY"
    message = "Invalid API key"


class ApiKeyDisabled(Unauthenticated):
    code = "API_KEY_DISABLED"
    message = "API key is disabled"


class ApiKeyExpired(Unauthenticated):
    code = "API_KEY_EXPIRED"
    message = "API key has expired"


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------

class Forbidden(EchoError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class AccessDenied(Forbidden):
    """No membership in the requested organization.

    Shares the ``FORBIDDEN`` code with permission denials so a caller cannot
    tell an unknown organization from one they are not a member of.
    """


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------

class ValidationFailed(EchoError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class MissingOrganization(ValidationFailed):
    code = "MISSING_ORG_ID"
    message = "Organization id is required"


class LastAdminError(ValidationFailed):
    code = "LAST_ADMIN"
    message = "Organization must keep at least one owner or admin"


# ---------------------------------------------------------------------------
# 404 / 409 / 410 / 429
# ---------------------------------------------------------------------------

class NotFound(EchoError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class InvitationNotFound(NotFound):
    code = "INVITATION_NOT_FOUND"
    message = "Invitation not found"


class Conflict(EchoError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflict"


class InvitationAlreadyAccepted(Conflict):
    code = "INVITATION_ALREADY_ACCEPTED"
    message = "Invitation already accepted"


class AlreadyMember(Conflict):
    code = "ALREADY_MEMBER"
    message = "User is already a member of this organization"


class Gone(EchoError):
    status_code = 410
    code = "GONE"
    message = "Gone"


class InvitationExpired(Gone):
    code = "INVITATION_EXPIRED"
    message = "Invitation has expired"


class RateLimited(EchoError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"

    def __init__(self, retry_after: int, headers: Optional[dict[str, str]] = None):
        super().__init__()
        self.retry_after = retry_after
        self.headers = headers or {}


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def error_body(code: str, message: str, status: int, **extra) -> dict:
    body = {"code": code, "message": message, "status": status}
    body.update(extra)
    return {"error": body}


def error_response(exc: EchoError) -> JSONResponse:
    """Render an EchoError as its JSON response."""
    headers: dict[str, str] = {}
    extra = {}
    if isinstance(exc, RateLimited):
        headers = {**exc.headers, "Retry-After": str(exc.retry_after)}
        extra["retry_after"] = exc.retry_after
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code, **extra),
        headers=headers or None,
    )


async def _handle_echo_error(request: Request, exc: EchoError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request.failed", path=request.url.path, code=exc.code)
    else:
        log.info(
            "request.denied",
            path=request.url.path,
            code=exc.code,
            status=exc.status_code,
        )
    return error_response(exc)


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body(
            ValidationFailed.code,
            "Invalid request body",
            400,
            details=jsonable_errors(exc),
        ),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content=error_body(EchoError.code, EchoError.message, 500),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation issues without the raw input values."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Install the shared error mapping on an application."""
    app.add_exception_handler(EchoError, _handle_echo_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected)
