"""Structured request logging: request_id, route, status, latency. Optional user_id and scan_source from state."""
import json
import logging
import re
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from hashwatch.core.config import get_settings
from hashwatch.core.logging_redaction import redact_for_log
from hashwatch.core.metrics import record_request

logger = logging.getLogger("hashwatch.request")

UNMETERED_PATHS = ("/metrics", "/health", "/healthz", "/readyz")
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    """Reuse the caller's X-Request-ID when it is short and log-safe; otherwise mint one."""
    incoming = request.headers.get("X-Request-ID")
    if incoming and _REQUEST_ID_RE.match(incoming):
        return incoming
    return str(uuid.uuid4())


def _safe_extra(request: Request, status_code: int, latency_ms: float) -> dict[str, Any]:
    extra: dict[str, Any] = {
        "request_id": getattr(request.state, "request_id", None),
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "latency_ms": round(latency_ms, 2),
    }
    if getattr(request.state, "user_id", None) is not None:
        extra["user_id"] = str(request.state.user_id)
    if getattr(request.state, "scan_source", None):
        extra["scan_source"] = request.state.scan_source
    return redact_for_log(extra)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign request_id and log one structured line per request (route, status, latency)."""

    async def dispatch(self, request: Request, call_next):
        request_id = _request_id(request)
        request.state.request_id = request_id
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000
        extra = _safe_extra(request, response.status_code, latency_ms)
        # Single JSON line when log_json; else standard log with extra
        if get_settings().log_json:
            logger.info(json.dumps({"event": "request", **extra}))
        else:
            logger.info("request %s %s %s %.2fms", request.method, request.url.path, response.status_code, latency_ms, extra=extra)
        response.headers["X-Request-ID"] = request_id
        if request.url.path not in UNMETERED_PATHS:
            record_request(request.method, request.url.path, response.status_code, latency_ms / 1000.0)
        return response
