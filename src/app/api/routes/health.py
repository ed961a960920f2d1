"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import get_cache_stats
from app.db.session import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """Database health check."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "database": "unreachable"}


@router.get("/health/cache")
async def cache_health(request: Request):
    """
    Cache health check and statistics.

    The session and provider caches are optional, so a missing Redis is
    reported as ``disabled`` rather than unhealthy.
    """
    stats = await get_cache_stats(getattr(request.app.state, "redis", None))
    if stats.get("enabled"):
        return {"status": "healthy", "cache": stats}
    return {"status": "disabled", "cache": stats}
