"""
docchat/api/middleware.py

Custom ASGI middleware for DocChat.

RequestLoggingMiddleware
    Binds a request id (the caller's ``X-Request-ID`` or a fresh one) into
    structlog context vars for the duration of the request, echoes it back
    in the response, and logs method, path, status code and wall-clock
    duration.  Excluded from logging:
      - GET /health  (high-frequency liveness probe)
      - GET /docs, /redoc, /openapi.json  (OpenAPI UI assets)
"""
from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Paths that generate too much noise to log on every call.
_SILENT_PATHS: frozenset[str] = frozenset(
    {"/health", "/docs", "/redoc", "/openapi.json"}
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request's method, path, status code, and latency."""

    async def dispatch(self, request: Request, call_next: object) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)  # type: ignore[operator]
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        if request.url.path not in _SILENT_PATHS:
            logger.info(
                "http_request",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                client=request.client.host if request.client else None,
            )

        return response
