"""Exception handlers for the FastAPI app.

Register with register_exception_handlers(app). Domain errors carry an
error_code that decides the HTTP status; every error body is
{"error", "message", ...} plus the request's correlation id so a failed
call can be matched to its log lines.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mailsync.core.config import get_settings
from mailsync.domain.exceptions import MailSyncException, ProviderRateLimitError
from mailsync.shared.context import get_correlation_id

logger = logging.getLogger(__name__)

_ERROR_CODE_STATUS: dict[str, int] = {
    "RESOURCE_NOT_FOUND": 404,
    "AUTHENTICATION_ERROR": 401,
    "CREDENTIAL_ERROR": 400,
    "VALIDATION_ERROR": 400,
    "SYNC_IN_PROGRESS": 409,
    "SYNC_ABORTED": 400,
    "RATE_LIMITED": 429,
    "INVALID_PROVIDER_REQUEST": 502,
    "PROVIDER_UNAVAILABLE": 503,
    "SERVICE_UNAVAILABLE": 503,
}


def _error_response(
    status_code: int, content: dict[str, Any], headers: dict[str, str] | None = None
) -> JSONResponse:
    correlation_id = get_correlation_id()
    if correlation_id:
        content = {**content, "correlation_id": correlation_id}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _mailsync_exception_handler(request: Request, exc: MailSyncException) -> JSONResponse:
    status = _ERROR_CODE_STATUS.get(exc.error_code, 400)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, ProviderRateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return _error_response(status, exc.to_dict(), headers)


def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        422,
        {
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": exc.errors(),
        },
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        {"error": "HTTP_ERROR", "message": exc.detail},
        getattr(exc, "headers", None),
    )


def _generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500; the exception text is only exposed in debug mode."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = str(exc) if get_settings().debug else "Internal server error"
    return _error_response(500, {"error": "INTERNAL_ERROR", "message": detail})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MailSyncException, _mailsync_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _generic_exception_handler)
