"""Request middleware for the API."""

import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from repodeploy.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

# Long-lived streams are logged once when they open
STREAMING_SUFFIX = "/events"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and the caller, then logs its outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex[:16]
        clear_context()
        bind_context(request_id=request_id, user_id=request.headers.get("X-User-ID"))

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        if request.url.path.endswith(STREAMING_SUFFIX):
            logger.info("request.stream_opened", path=request.url.path)
        elif response.status_code >= 500:
            logger.error(
                "request.failed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )
        else:
            logger.info(
                "request.completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        return response
