"""Redis connection management for the session and provider caches."""

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


async def get_redis_connection(
    url: str,
    *,
    socket_timeout: float = 2,
    socket_connect_timeout: float = 2,
) -> Redis | None:
    """
    Open an async Redis connection for caching.

    Args:
        url: Redis connection URL
        socket_timeout: Timeout for individual commands (seconds)
        socket_connect_timeout: Timeout for the initial connect (seconds)

    Returns:
        Redis client instance or None if connection fails

    Note:
        Connection errors are handled gracefully and None is returned if
        Redis is unavailable. Every cache in the application is an
        optimization, so the app keeps running without it.
    """
    try:
        redis_client = Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=socket_connect_timeout,
            socket_timeout=socket_timeout,
        )
        await redis_client.ping()
        logger.info("Successfully connected to Redis")
        return redis_client
    except RedisError as e:
        logger.warning(f"Failed to connect to Redis: {e}. Caching will be disabled.")
        return None
    except Exception as e:
        logger.error(f"Unexpected error connecting to Redis: {e}. Caching will be disabled.")
        return None


async def close_redis_connection(redis_client: Redis | None) -> None:
    """Close a connection opened by :func:`get_redis_connection`."""
    if redis_client is None:
        return
    try:
        await redis_client.aclose()
    except RedisError as e:
        logger.warning(f"Error closing Redis connection: {e}")


async def get_cache_stats(redis_client: Redis | None) -> dict[str, Any]:
    """
    Get cache statistics.

    Returns:
        Dictionary with cache statistics:
        - enabled: Whether caching is active
        - backend: Backend type
        - size: Number of keys in the current database (if available)
    """
    if redis_client is None:
        return {"enabled": False}

    try:
        await redis_client.ping()
    except RedisError as e:
        logger.error(f"Failed to get cache stats: {e}")
        return {"enabled": False, "error": str(e)}

    stats: dict[str, Any] = {"enabled": True, "backend": "redis"}
    try:
        stats["size"] = await redis_client.dbsize()
    except RedisError:
        stats["size"] = "unavailable"

    return stats
