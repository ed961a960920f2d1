"""Logging middleware for HTTP requests and responses."""

import logging
import time
import uuid
from collections.abc import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its status and duration.

    Adds ``X-Process-Time`` to responses and echoes ``X-Request-ID`` (a new
    one is generated when the caller sends none). Health checks and API docs
    are not logged.

    Query strings are never logged: they may carry upstream session keys.
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._quiet_paths = {"/health", "/health/db", "/health/cache", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        quiet = request.url.path in self._quiet_paths
        if not quiet:
            client_host = request.client.host if request.client else "unknown"
            logger.info(f"→ [{request_id}] {request.method} {request.url.path} from {client_host}")

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        if not quiet:
            log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                log_level,
                f"← [{request_id}] {request.method} {request.url.path} - "
                f"{response.status_code} ({duration:.3f}s)",
            )

        response.headers["X-Process-Time"] = f"{duration:.3f}"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
