"""Service layer for gateway users.

Gateway users stand in for the external identity provider: they own banking
directories and authenticate with a bearer token.
"""

import logging

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.core.security import create_access_token, get_password_hash, verify_password
from app.db.session import transactional
from app.models.user import User
from app.repositories.user import UserRepository
from app.schemas.auth import UserRegister

logger = logging.getLogger(__name__)


async def register_user(db: AsyncSession, user_data: UserRegister) -> User:
    """Create a new active user.

    Raises:
        ConflictError: If the username or email is already registered
    """
    repo = UserRepository(User, db)
    if await repo.exists_by_username_or_email(user_data.username, user_data.email):
        raise ConflictError("Username or email already registered")

    async with transactional(db):
        user = await repo.create(
            obj_in={
                "email": user_data.email,
                "username": user_data.username,
                "hashed_password": get_password_hash(user_data.password),
                "is_active": True,
            }
        )

    logger.info(f"Registered user {user.id} ({user.username})")
    return user


async def authenticate_user(
    db: AsyncSession,
    username_or_email: str,
    password: str,
) -> User:
    """Authenticate a user by username/email and password.

    Args:
        db: Async database session
        username_or_email: Username or email address
        password: Plain text password to verify

    Raises:
        HTTPException: 401 if credentials invalid, 400 if user inactive

    Example:
        >>> user = await authenticate_user(db, "john@example.com", "secret123")
        >>> print(user.username)
        johndoe
    """
    user = await UserRepository(User, db).get_by_username_or_email(username_or_email)

    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user",
        )

    return user


async def create_user_token(db: AsyncSession, username_or_email: str, password: str) -> str:
    """Authenticate a user and issue an access token."""
    user = await authenticate_user(db, username_or_email, password)
    return create_access_token(subject=user.username)
