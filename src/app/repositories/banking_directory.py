"""Banking directory repository.

Every query is scoped by ``user_id``: a directory that belongs to someone else
is indistinguishable from one that does not exist.
"""

from sqlalchemy import delete, func, select

from app.models.banking_directory import BankingDirectory
from app.repositories.base import BaseRepository


class BankingDirectoryRepository(BaseRepository[BankingDirectory]):
    """Repository for BankingDirectory model.

    Example:
        >>> repo = BankingDirectoryRepository(BankingDirectory, db)
        >>> directories = await repo.get_by_user_id(user_id=1)
    """

    async def get_by_user_id(self, user_id: int) -> list[BankingDirectory]:
        """Get all directories of a user, oldest first."""
        result = await self.db.execute(
            select(BankingDirectory)
            .where(BankingDirectory.user_id == user_id)
            .order_by(BankingDirectory.id)
        )
        return list(result.scalars().all())

    async def get_for_user(self, user_id: int, directory_id: int) -> BankingDirectory | None:
        """Get a directory only if it belongs to ``user_id``."""
        result = await self.db.execute(
            select(BankingDirectory).where(
                BankingDirectory.id == directory_id,
                BankingDirectory.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def count_by_user_id(self, user_id: int) -> int:
        """Count the directories of a user."""
        result = await self.db.execute(
            select(func.count())
            .select_from(BankingDirectory)
            .where(BankingDirectory.user_id == user_id)
        )
        return result.scalar_one()

    async def delete_for_user(self, user_id: int, directory_id: int) -> int:
        """Delete a directory owned by ``user_id``.

        Returns:
            Number of rows deleted (0 or 1). Caller must commit.
        """
        result = await self.db.execute(
            delete(BankingDirectory).where(
                BankingDirectory.id == directory_id,
                BankingDirectory.user_id == user_id,
            )
        )
        await self.db.flush()
        return result.rowcount or 0
