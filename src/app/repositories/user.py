"""User repository for user-specific database operations."""

from sqlalchemy import or_, select

from app.models.user import User
from app.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User model.

    Also serves as the directory service's user-existence checker through
    the inherited ``exists``.

    Example:
        >>> repo = UserRepository(User, db)
        >>> user = await repo.get_by_username_or_email("jdoe")
    """

    async def get_by_username(self, username: str) -> User | None:
        """Get user by username."""
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_by_username_or_email(self, identifier: str) -> User | None:
        """Get user by username or email address.

        Args:
            identifier: Username or email address

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(or_(User.username == identifier, User.email == identifier))
        )
        return result.scalars().first()

    async def exists_by_username_or_email(self, username: str, email: str) -> bool:
        """Check if either the username or the email is already registered."""
        result = await self.db.execute(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        return result.first() is not None
