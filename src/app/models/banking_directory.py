"""Banking directory model: a user's configured access to one provider."""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class BankingDirectory(Base, TimestampMixin):
    """Provider access for a user.

    ``encrypted_credentials`` holds the AES-256-GCM encrypted JSON credentials
    and must never leave the service layer.
    """

    __tablename__ = "banking_directories"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str | None] = mapped_column(String(90), nullable=True)
    provider_name: Mapped[str] = mapped_column(String(255))
    encrypted_credentials: Mapped[str] = mapped_column(Text)

    user: Mapped["User"] = relationship("User", back_populates="banking_directories")  # noqa: F821
