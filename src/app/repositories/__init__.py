"""Repository layer for database operations.

Repositories:
    - BaseRepository: Generic CRUD operations for any model
    - UserRepository: Gateway user lookups
    - BankingDirectoryRepository: Directory queries, always scoped by owner

Usage:
    >>> from app.repositories import BankingDirectoryRepository
    >>> from app.models.banking_directory import BankingDirectory
    >>>
    >>> repo = BankingDirectoryRepository(BankingDirectory, db)
    >>> directories = await repo.get_by_user_id(user.id)
"""

from app.repositories.banking_directory import BankingDirectoryRepository
from app.repositories.base import BaseRepository
from app.repositories.user import UserRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "BankingDirectoryRepository",
]
