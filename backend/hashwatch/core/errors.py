"""Error taxonomy and FastAPI handlers. Every error response is {error, details, timestamp}."""
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, details: Any = None, *, error: str | None = None):
        super().__init__(error or self.error)
        if error is not None:
            self.error = error
        self.details = details


class Unauthorized(AppError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    error = "Forbidden"


class InvalidInput(AppError):
    status_code = 400
    error = "Invalid input"


class InvalidFingerprintFormat(InvalidInput):
    error = "Invalid hash format. SHA-256 hash must be 64 hexadecimal characters."


class FileTooLarge(InvalidInput):
    error = "File size exceeds the maximum limit of 32MB"


class UnsupportedFileType(InvalidInput):
    error = "Unsupported file type"


class NotFound(AppError):
    status_code = 404
    error = "Not found"


class TooManyRequests(AppError):
    status_code = 429
    error = "Too many requests"


class UpstreamUnavailable(AppError):
    status_code = 503
    error = "Upstream service unavailable"


class Internal(AppError):
    status_code = 500
    error = "Internal server error"


class HashComputationFailed(Internal):
    error = "Failed to calculate file hash"


def _stringify(details: Any) -> str | None:
    if details is None:
        return None
    if isinstance(details, str):
        return details
    if isinstance(details, BaseException):
        return str(details)
    try:
        return json.dumps(details, default=str)
    except (TypeError, ValueError):
        return str(details)


def error_payload(error: str, details: Any = None) -> dict:
    return {
        "error": error,
        "details": _stringify(details),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def register_exception_handlers(app: FastAPI) -> None:
    """Catch at the boundary; no raw exception object reaches the response."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.error, _stringify(exc.details))
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc.error, exc.details))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}" for e in exc.errors()
        )
        return JSONResponse(status_code=400, content=error_payload(InvalidInput.error, details))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_payload(Internal.error, exc))
