"""Generic repository shared by the model repositories.

Repositories never commit: services wrap writes in
``app.db.session.transactional``.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


def _values(obj_in: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(obj_in, BaseModel):
        return obj_in.model_dump(exclude_unset=True)
    return obj_in


class BaseRepository(Generic[ModelType]):
    """Primary-key lookups plus create and partial update.

    Example:
        >>> repo = UserRepository(User, db)
        >>> user = await repo.get(1)
    """

    def __init__(self, model: type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    async def get(self, id: Any) -> ModelType | None:
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)  # type: ignore[attr-defined]
        )
        return result.scalar_one_or_none()

    async def exists(self, id: Any) -> bool:
        """Whether a row with this primary key exists."""
        result = await self.db.execute(
            select(self.model.id).where(self.model.id == id)  # type: ignore[attr-defined]
        )
        return result.first() is not None

    async def create(self, *, obj_in: BaseModel | dict[str, Any]) -> ModelType:
        """Insert a row and flush it so generated columns are loaded."""
        db_obj = self.model(**_values(obj_in))
        self.db.add(db_obj)
        await self.db.flush()
        await self.db.refresh(db_obj)
        return db_obj

    async def update(self, *, db_obj: ModelType, obj_in: BaseModel | dict[str, Any]) -> ModelType:
        """Apply the given fields to ``db_obj``; fields not given are left alone."""
        for field, value in _values(obj_in).items():
            setattr(db_obj, field, value)
        await self.db.flush()
        await self.db.refresh(db_obj)
        return db_obj
