"""
Exception handlers.

AppErrors become their own status with a JSON envelope. Anything else is
an unexpected failure: logged in full, reported to Sentry and answered with
a generic 500 carrying only a correlation id.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from usergate.core.errors import AppError, ErrorCode, RateLimitError, ValidationError
from usergate.core.utils import generate_id, utc_now
from usergate.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)


def _error_body(message: str, code: ErrorCode, details=None) -> dict:
    return {
        "success": False,
        "message": message,
        "error": {"code": code.value, "details": details},
        "timestamp": utc_now().isoformat(),
    }


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.is_internal:
        error_id = generate_id("err")
        logger.error(f"{exc.code.value} on {request.method} {request.url.path} [{error_id}]: {exc.message}", exc_info=exc)
        capture_exception(exc, error_id=error_id, path=request.url.path)
        body = _error_body(exc.message, exc.code, {"error_id": error_id})
        return JSONResponse(status_code=exc.status_code, content=body)
    
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
    
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.code, exc.details),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return await app_error_handler(request, ValidationError(details=errors))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = generate_id("err")
    logger.exception(f"Unhandled error on {request.method} {request.url.path} [{error_id}]", exc_info=exc)
    capture_exception(exc, error_id=error_id, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", ErrorCode.INTERNAL_ERROR, {"error_id": error_id}),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
