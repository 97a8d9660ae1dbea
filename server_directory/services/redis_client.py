"""
Redis Connection

Shared Redis client for the cache layer and the distributed rate limiter.

Uses a module-level singleton to maintain a single connection pool.
Returns None if Redis is unavailable, allowing graceful degradation:
the cache behaves as a permanent miss and the rate limiter switches to
its per-process store.
"""

import logging
import time
from typing import Optional

import redis
from redis.exceptions import RedisError

from server_directory.config import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
# Monotonic time of the last failed connection attempt
_last_failure: Optional[float] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create a Redis client connection.

    After a failed attempt, calls return None without reconnecting until
    settings.redis_retry_interval has passed, so a dead Redis costs one
    connect timeout per interval rather than one per call.

    Returns:
        Redis client instance or None if connection fails
    """
    global _redis_client, _last_failure

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    if _last_failure is not None and time.monotonic() - _last_failure < settings.redis_retry_interval:
        return None

    try:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
        )
        client.ping()
    except (RedisError, OSError) as e:
        if not settings.is_production:
            logger.warning(f"Failed to connect to Redis: {e}")
        _last_failure = time.monotonic()
        return None

    logger.info("Successfully connected to Redis")
    _redis_client = client
    _last_failure = None
    return _redis_client


def set_redis_client(client: Optional[redis.Redis]) -> None:
    """Replace the shared client (tests, or a pre-configured pool)."""
    global _redis_client, _last_failure
    _redis_client = client
    _last_failure = None


def close_redis_connection() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")
