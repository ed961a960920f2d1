"""Encrypted, TTL-bound cache of upstream session keys.

Keys are stored per (user, directory) under ``u:<user_id>::bd:<directory_id>``
and encrypted with the session cipher before they reach Redis. The cache is an
optimization only: read errors behave like a miss and write errors are logged
and swallowed, so a broken Redis degrades to a fresh login on every request.
Expiry is delegated to Redis (``SETEX``).
"""

import logging
from typing import Protocol

from redis.exceptions import RedisError

from app.core.cipher import CipherError, CredentialCipher

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """The subset of ``redis.asyncio.Redis`` the cache relies on."""

    async def get(self, name: str) -> str | None: ...

    async def setex(self, name: str, time: int, value: str) -> object: ...

    async def delete(self, *names: str) -> int: ...


def session_cache_key(user_id: int, directory_id: int) -> str:
    return f"u:{user_id}::bd:{directory_id}"


class SessionCache:
    """Session-key cache.

    Args:
        store: Redis connection, or None when Redis is unavailable
        cipher: Cipher bound to the session encryption key
        ttl_seconds: Lifetime of every cached key
    """

    def __init__(self, store: KeyValueStore | None, cipher: CredentialCipher, ttl_seconds: int):
        self._store = store
        self._cipher = cipher
        self.ttl_seconds = ttl_seconds

    async def get(self, user_id: int, directory_id: int) -> str | None:
        """Return the cached session key, or None on miss or any failure."""
        if self._store is None:
            return None

        key = session_cache_key(user_id, directory_id)
        try:
            ciphered = await self._store.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"error while getting cached session key (key: {key}), cause: {e}")
            return None

        if not ciphered:
            return None

        try:
            return self._cipher.decrypt(ciphered)
        except CipherError as e:
            logger.error(f"cached session key could not be decrypted (key: {key}), cause: {e}")
            return None

    async def put(
        self,
        user_id: int,
        directory_id: int,
        session_key: str,
        ttl_seconds: int | None = None,
    ) -> None:
        """Encrypt and store a session key. Never raises."""
        if self._store is None:
            return

        key = session_cache_key(user_id, directory_id)
        try:
            ciphered = self._cipher.encrypt(session_key)
        except CipherError as e:
            logger.error(f"unexpected error while encrypting session key, cause: {e}")
            return

        try:
            await self._store.setex(key, ttl_seconds or self.ttl_seconds, ciphered)
        except (RedisError, OSError) as e:
            logger.error(f"could not save session key in cache (key: {key}), cause: {e}")

    async def invalidate(self, user_id: int, directory_id: int) -> None:
        """Drop a cached key (after logout or an invalid-key answer). Never raises."""
        if self._store is None:
            return

        key = session_cache_key(user_id, directory_id)
        try:
            await self._store.delete(key)
        except (RedisError, OSError) as e:
            logger.warning(f"could not drop cached session key (key: {key}), cause: {e}")
