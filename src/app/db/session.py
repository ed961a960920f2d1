"""Database engine, request-scoped sessions and the ``transactional`` helper."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Session dependency for route handlers.

    Writes are committed by the services through :func:`transactional`; the
    final commit here only flushes what a handler may have left pending.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transactional(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back and re-raise on any exception.

    Example:
        ```python
        async with transactional(db):
            directory = await repo.create(obj_in={...})
        ```
    """
    try:
        yield db
        await db.commit()
        logger.debug("Transaction committed")
    except Exception as e:
        await db.rollback()
        logger.error(f"Transaction rolled back due to error: {type(e).__name__}: {e}")
        raise
