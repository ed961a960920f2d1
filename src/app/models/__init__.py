"""ORM models; imported here so metadata is complete for create_all and Alembic."""

from app.models.banking_directory import BankingDirectory
from app.models.user import User

__all__ = ["BankingDirectory", "User"]
