"""Declarative base shared by the ORM models."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for users and banking directories."""


class TimestampMixin:
    """Timezone-aware ``created_at``/``updated_at`` columns.

    Python-side defaults keep SQLite tests and PostgreSQL in agreement; the
    server defaults match the migration.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )


__all__ = ["Base", "TimestampMixin"]
