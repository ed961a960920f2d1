"""FastAPI application entry point."""

import logging
import logging.config
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.api.routes import auth, banking, health
from app.core.cache import close_redis_connection, get_redis_connection
from app.core.config import settings
from app.core.exceptions import AppException, app_exception_handler, unhandled_exception_handler
from app.core.middleware import RequestLoggingMiddleware
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.db.base import Base
from app.db.session import engine

# Configure logging
logging.config.dictConfig(settings.LOGGING_CONFIG)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})...")

    # Create tables (use Alembic in production)
    if settings.ENVIRONMENT == "development":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    if not settings.PROMETEO_API_KEY:
        logger.warning("PROMETEO_API_KEY is not set, upstream banking calls will fail")

    app.state.http_client = httpx.AsyncClient(
        base_url=settings.PROMETEO_API_URL,
        timeout=settings.PROMETEO_TIMEOUT_SECONDS,
    )
    app.state.redis = await get_redis_connection(
        settings.REDIS_URL,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
    )

    yield

    logger.info("Shutting down application...")
    await app.state.http_client.aclose()
    await close_redis_connection(app.state.redis)
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)

# Note: Middleware is applied in reverse order, so this will be the outermost layer
app.add_middleware(RequestLoggingMiddleware)

# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, unhandled_exception_handler)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(banking.router, prefix="/api/v1/banking", tags=["banking"])
