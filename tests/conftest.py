"""Pytest fixtures for testing."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.cipher import CredentialCipher
from app.core.deps import get_http_client, get_redis
from app.core.rate_limit import limiter
from app.core.security import create_access_token, get_password_hash
from app.db.base import Base
from app.db.session import get_db
from app.models.banking_directory import BankingDirectory
from app.models.user import User
from app.repositories.user import UserRepository
from app.schemas.banking import ProviderCredentials
from app.services.directory_service import DirectoryService
from app.services.login_service import LoginOrchestrator
from app.services.prometeo_client import PrometeoClient
from app.services.provider_catalog import ProviderCatalog
from app.services.session_cache import SessionCache
from main import app

# Test database URL (SQLite in-memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

UPSTREAM_URL = "https://prometeo.test"
CREDENTIALS_KEY = "test-credentials-key"
SESSION_KEY_SECRET = "test-session-key"


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` with a controllable clock.

    Only the commands used by the application are supported. Set ``fail`` to
    make every command raise a connection error.
    """

    def __init__(self):
        self.now = 0.0
        self.fail = False
        self._data: dict[str, tuple[str, float | None]] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def raw(self, name: str) -> str | None:
        """Stored value, ignoring expiry."""
        entry = self._data.get(name)
        return entry[0] if entry else None

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, name: str) -> str | None:
        self._check()
        entry = self._data.get(name)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.now >= expires_at:
            del self._data[name]
            return None
        return value

    async def setex(self, name: str, time: int, value: str) -> bool:
        self._check()
        self._data[name] = (value, self.now + time)
        return True

    async def delete(self, *names: str) -> int:
        self._check()
        return sum(1 for name in names if self._data.pop(name, None) is not None)

    async def ping(self) -> bool:
        self._check()
        return True

    async def dbsize(self) -> int:
        self._check()
        return len(self._data)


Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Scripted Prometeo API served through ``httpx.MockTransport``.

    Routes are keyed by ``(method, path)``. A route is either a handler or a
    list of responses served in order (the last one repeats). Every request
    is recorded in ``calls``.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Handler | list[httpx.Response]] = {}
        self.calls: list[httpx.Request] = []

    def on(self, method: str, path: str, *responses: httpx.Response | Handler) -> None:
        if len(responses) == 1 and callable(responses[0]):
            self.routes[(method, path)] = responses[0]
        else:
            self.routes[(method, path)] = list(responses)

    def on_json(self, method: str, path: str, payload: dict[str, Any], status_code: int = 200) -> None:
        self.on(method, path, httpx.Response(status_code, json=payload))

    def on_error(self, method: str, path: str, message: str, status_code: int = 200) -> None:
        """Answer with a typed ``{"status": "error"}`` business error."""
        self.on_json(method, path, {"status": "error", "message": message}, status_code=status_code)

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        """Decode a form-encoded request body."""
        return dict(httpx.QueryParams(request.content.decode()))

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.method == method and c.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="no route")
        if callable(route):
            return route(request)
        response = route.pop(0) if len(route) > 1 else route[0]
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


@pytest.fixture(autouse=True)
def reset_limiter():
    """Rate limit counters are process-wide; start every test from zero."""
    limiter.reset()
    yield
    limiter.reset()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db(test_engine) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff waits requested by the upstream client, in seconds."""
    return []


@pytest_asyncio.fixture
async def http_client(upstream: FakeUpstream) -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(upstream.handler), base_url=UPSTREAM_URL
    ) as http:
        yield http


@pytest.fixture
def prometeo_client(http_client: httpx.AsyncClient, sleeps: list[float]) -> PrometeoClient:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return PrometeoClient(http_client, "test-api-key", sleep=record_sleep)


@pytest.fixture
def credentials_cipher() -> CredentialCipher:
    return CredentialCipher(CREDENTIALS_KEY)


@pytest.fixture
def session_cache(fake_redis: FakeRedis) -> SessionCache:
    return SessionCache(fake_redis, CredentialCipher(SESSION_KEY_SECRET), ttl_seconds=600)


@pytest.fixture
def directory_service(
    test_db: AsyncSession,
    prometeo_client: PrometeoClient,
    fake_redis: FakeRedis,
    session_cache: SessionCache,
    credentials_cipher: CredentialCipher,
) -> DirectoryService:
    return DirectoryService(
        test_db,
        prometeo_client,
        LoginOrchestrator(prometeo_client),
        ProviderCatalog(prometeo_client, fake_redis, country="PE"),
        session_cache,
        credentials_cipher,
        UserRepository(User, test_db),
        sandbox_provider="test",
    )


@pytest_asyncio.fixture(scope="function")
async def client(
    test_db: AsyncSession,
    http_client: httpx.AsyncClient,
    fake_redis: FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[AsyncClient]:
    """Create a test client with database, upstream and Redis overrides."""
    from app.core.config import settings

    monkeypatch.setattr(settings, "BANKING_CREDENTIALS_ENCRYPTION_KEY", CREDENTIALS_KEY)
    monkeypatch.setattr(settings, "PROMETEO_SESSION_ENCRYPTION_KEY", SESSION_KEY_SECRET)

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.state.redis = fake_redis

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.redis = None


async def _create_user(db: AsyncSession, username: str, password: str, *, is_active: bool = True) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=get_password_hash(password),
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def test_user(test_db: AsyncSession) -> User:
    """Create a test user."""
    return await _create_user(test_db, "testuser", "TestPass123")


@pytest_asyncio.fixture(scope="function")
async def other_user(test_db: AsyncSession) -> User:
    """Create a second user, owner of nothing the test user owns."""
    return await _create_user(test_db, "otheruser", "OtherPass123")


@pytest_asyncio.fixture(scope="function")
async def test_inactive_user(test_db: AsyncSession) -> User:
    """Create an inactive test user."""
    return await _create_user(test_db, "inactiveuser", "InactivePass123", is_active=False)


@pytest.fixture(scope="function")
def auth_headers(test_user: User) -> dict[str, str]:
    """Generate authorization headers with user token."""
    return {"Authorization": f"Bearer {create_access_token(test_user.username)}"}


@pytest.fixture(scope="function")
def inactive_user_auth_headers(test_inactive_user: User) -> dict[str, str]:
    """Generate authorization headers with inactive user token."""
    return {"Authorization": f"Bearer {create_access_token(test_inactive_user.username)}"}


@pytest_asyncio.fixture(scope="function")
async def test_directory(
    test_db: AsyncSession,
    test_user: User,
    credentials_cipher: CredentialCipher,
) -> BankingDirectory:
    """A sandbox directory owned by the test user, with valid stored credentials."""
    credentials = ProviderCredentials(username="12345678", password="gfdsa")
    directory = BankingDirectory(
        user_id=test_user.id,
        name="Main account",
        provider_name="test",
        encrypted_credentials=credentials_cipher.encrypt(credentials.model_dump_json()),
    )
    test_db.add(directory)
    await test_db.commit()
    await test_db.refresh(directory)
    return directory
