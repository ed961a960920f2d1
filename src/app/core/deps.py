"""Dependencies for FastAPI routes.

Besides resolving the current user, this module builds the banking components
for each request from the shared resources stored on ``app.state`` (the
``httpx.AsyncClient`` and the Redis connection) and from ``settings``. Nothing
below the routes reads configuration globally.
"""

from typing import Annotated

import httpx
import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cipher import CredentialCipher
from app.core.config import settings
from app.core.constants import PrometeoConstants
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User
from app.repositories.user import UserRepository
from app.schemas.auth import TokenData
from app.services.directory_service import DirectoryService
from app.services.login_service import LoginOrchestrator
from app.services.prometeo_client import PrometeoClient, RetryPolicy
from app.services.provider_catalog import ProviderCatalog
from app.services.session_cache import SessionCache

# OAuth2 scheme for extracting token from Authorization header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises:
        HTTPException: If credentials are invalid or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(token)
        username: str | None = payload.get("sub")

        if username is None:
            raise credentials_exception

        token_data = TokenData(username=username)
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = await UserRepository(User, db).get_by_username(token_data.username)
    if user is None:
        raise credentials_exception

    return user


async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Get the current authenticated and active user.

    Raises:
        HTTPException: If the user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user",
        )

    return current_user


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared upstream HTTP client opened by the application lifespan."""
    return request.app.state.http_client


def get_redis(request: Request) -> Redis | None:
    """Shared Redis connection, or None when Redis is unavailable."""
    return getattr(request.app.state, "redis", None)


def get_prometeo_client(
    http_client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> PrometeoClient:
    return PrometeoClient(
        http_client,
        settings.PROMETEO_API_KEY,
        retry_policy=RetryPolicy(
            max_attempts=settings.PROMETEO_MAX_ATTEMPTS,
            initial_backoff_ms=settings.PROMETEO_INITIAL_BACKOFF_MS,
            max_backoff_ms=settings.PROMETEO_MAX_BACKOFF_MS,
        ),
    )


def get_provider_catalog(
    client: Annotated[PrometeoClient, Depends(get_prometeo_client)],
    redis: Annotated[Redis | None, Depends(get_redis)],
) -> ProviderCatalog:
    return ProviderCatalog(
        client,
        redis,
        country=settings.PROMETEO_PROVIDER_COUNTRY,
        ttl_seconds=settings.PROVIDERS_CACHE_TTL_SECONDS,
    )


def get_session_cache(
    redis: Annotated[Redis | None, Depends(get_redis)],
) -> SessionCache:
    return SessionCache(
        redis,
        CredentialCipher(settings.PROMETEO_SESSION_ENCRYPTION_KEY),
        settings.SESSION_CACHE_TTL_SECONDS,
    )


def get_directory_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[PrometeoClient, Depends(get_prometeo_client)],
    catalog: Annotated[ProviderCatalog, Depends(get_provider_catalog)],
    session_cache: Annotated[SessionCache, Depends(get_session_cache)],
) -> DirectoryService:
    return DirectoryService(
        db,
        client,
        LoginOrchestrator(client),
        catalog,
        session_cache,
        CredentialCipher(settings.BANKING_CREDENTIALS_ENCRYPTION_KEY),
        UserRepository(User, db),
        sandbox_provider=settings.SANDBOX_PROVIDER,
    )


def get_session_key(
    x_session_key: Annotated[
        str | None,
        Header(
            min_length=PrometeoConstants.SESSION_KEY_LENGTH,
            max_length=PrometeoConstants.SESSION_KEY_LENGTH,
            description="Upstream session key to use instead of logging in",
        ),
    ] = None,
) -> str | None:
    return x_session_key


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentActiveUser = Annotated[User, Depends(get_current_active_user)]
Directories = Annotated[DirectoryService, Depends(get_directory_service)]
Catalog = Annotated[ProviderCatalog, Depends(get_provider_catalog)]
SessionKey = Annotated[str | None, Depends(get_session_key)]
