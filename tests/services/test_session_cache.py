"""Tests for the encrypted session-key cache."""

from app.core.cipher import CredentialCipher
from app.services.session_cache import SessionCache, session_cache_key

SESSION_KEY = "0123456789abcdef0123456789abcdef"


def test_cache_key_format():
    assert session_cache_key(7, 42) == "u:7::bd:42"


async def test_put_then_get(session_cache, fake_redis):
    await session_cache.put(1, 2, SESSION_KEY)

    assert await session_cache.get(1, 2) == SESSION_KEY


async def test_values_are_stored_encrypted(session_cache, fake_redis):
    await session_cache.put(1, 2, SESSION_KEY)

    stored = fake_redis.raw("u:1::bd:2")
    assert stored is not None
    assert SESSION_KEY not in stored


async def test_entry_expires_after_ttl(session_cache, fake_redis):
    await session_cache.put(1, 2, SESSION_KEY)

    fake_redis.advance(599)
    assert await session_cache.get(1, 2) == SESSION_KEY

    fake_redis.advance(1)
    assert await session_cache.get(1, 2) is None


async def test_custom_ttl(session_cache, fake_redis):
    await session_cache.put(1, 2, SESSION_KEY, ttl_seconds=5)

    fake_redis.advance(5)
    assert await session_cache.get(1, 2) is None


async def test_entries_are_scoped_by_user_and_directory(session_cache):
    await session_cache.put(1, 2, SESSION_KEY)

    assert await session_cache.get(2, 2) is None
    assert await session_cache.get(1, 3) is None


async def test_read_errors_behave_like_a_miss(session_cache, fake_redis):
    await session_cache.put(1, 2, SESSION_KEY)
    fake_redis.fail = True

    assert await session_cache.get(1, 2) is None


async def test_write_errors_are_swallowed(session_cache, fake_redis):
    fake_redis.fail = True

    await session_cache.put(1, 2, SESSION_KEY)
    await session_cache.invalidate(1, 2)

    fake_redis.fail = False
    assert await session_cache.get(1, 2) is None


async def test_undecryptable_entry_is_a_miss(fake_redis):
    await SessionCache(fake_redis, CredentialCipher("old-key"), 600).put(1, 2, SESSION_KEY)

    rotated = SessionCache(fake_redis, CredentialCipher("new-key"), 600)

    assert await rotated.get(1, 2) is None


async def test_invalidate(session_cache):
    await session_cache.put(1, 2, SESSION_KEY)

    await session_cache.invalidate(1, 2)

    assert await session_cache.get(1, 2) is None


async def test_without_redis_nothing_is_cached():
    cache = SessionCache(None, CredentialCipher("secret"), 600)

    await cache.put(1, 2, SESSION_KEY)

    assert await cache.get(1, 2) is None
