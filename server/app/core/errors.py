"""Application errors and the JSON error envelope.

Every error response has the same shape so the frontend can branch on
``code`` (e.g. show the CAPTCHA widget on ``CAPTCHA_REQUIRED``)::

    {"statusCode": 403, "error": "Forbidden", "message": "...",
     "code": "CAPTCHA_REQUIRED", "path": "/api/...", "timestamp": "...Z"}
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from app.core.config import get_settings
from app.core.time import isoformat_z, utcnow

logger = logging.getLogger(__name__)


class AbuseGateError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 400
    code = "BAD_REQUEST"
    message = "Bad request"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        self.message = message or self.message
        self.headers = headers
        super().__init__(self.message)


class AuthBlockedError(AbuseGateError):
    status_code = 429
    code = "AUTH_BLOCKED"
    message = "Too many failed attempts. Try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message, headers={"Retry-After": str(retry_after)})


class CaptchaRequiredError(AbuseGateError):
    status_code = 403
    code = "CAPTCHA_REQUIRED"
    message = "Please complete the CAPTCHA verification."


class CaptchaInvalidError(AbuseGateError):
    status_code = 403
    code = "CAPTCHA_INVALID"
    message = "CAPTCHA verification failed"


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    headers: dict[str, str] | None = None,
    extra: dict | None = None,
) -> JSONResponse:
    """Build the standard error envelope."""
    content = {
        "statusCode": status_code,
        "error": _status_phrase(status_code),
        "message": message,
        "code": code,
        "path": request.url.path,
        "timestamp": isoformat_z(utcnow()),
    }
    if extra:
        content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def abuse_gate_error_handler(request: Request, exc: AbuseGateError) -> JSONResponse:
    return error_response(request, exc.status_code, exc.message, exc.code, headers=exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPException; a dict detail may carry its own ``code``."""
    code = "HTTP_ERROR"
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code", code)
        message = str(detail.get("message", _status_phrase(exc.status_code)))
    elif isinstance(detail, str):
        message = detail
    else:
        message = _status_phrase(exc.status_code)
    return error_response(request, exc.status_code, message, code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return error_response(request, 422, ", ".join(messages), "VALIDATION_ERROR")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a generic 500 response."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    extra = None
    if not get_settings().is_production:
        extra = {"debug": str(exc)}
    return error_response(request, 500, "Internal server error", "INTERNAL_ERROR", extra=extra)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AbuseGateError, abuse_gate_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
