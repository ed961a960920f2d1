"""Rate limiting configuration using slowapi.

Only endpoints that are expensive or sensitive carry a limit: user login and
registration (credential guessing) and both transfer phases (each one is a
real upstream banking operation).
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with ``detail``, ``retry_after`` and a ``Retry-After`` header.

    ``retry_after`` is the length of the limit's window in seconds
    (``5/minute`` -> 60).
    """
    retry_after = DEFAULT_RETRY_AFTER_SECONDS
    limit = getattr(exc, "limit", None)
    if limit is not None:
        retry_after = int(limit.limit.get_expiry())

    client_host = request.client.host if request.client else "unknown"
    logger.warning(f"Rate limit exceeded on {request.url.path} by {client_host}: {exc.detail}")

    response = JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {exc.detail}",
            "retry_after": retry_after,
        },
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    enabled=settings.RATE_LIMIT_ENABLED,
    headers_enabled=False,
)
