"""
Redis Caching Service

Best-effort memoization of read views in Redis.

Contract:
- Redis may disappear at any time. A failed or unavailable `get` is a
  miss; callers always have the database as source of truth.
- `set` and `delete` failures are logged (outside production) and
  swallowed.
- Values round-trip through JSON, so a hit is always a fresh copy.

Key shape:
    <cache_prefix><namespace>:<part1>:<part2>...

Each part is escaped ("%" -> "%25", ":" -> "%3A") before joining, so an
identifier containing the delimiter cannot collide with another key.

Invalidation:
- `invalidate_user_cache` deletes the fixed per-user key families
  (dashboard, profile, ratings list) on every rating mutation.
- Writes may carry tags; `cache_invalidate_tags` drops every key written
  under a tag. Listing pages and category counts are tagged "servers"
  so a rating mutation can invalidate them without enumerating keys.
"""

import json
import logging
from typing import Any, Iterable, Optional

from redis.exceptions import RedisError

from server_directory.config import get_settings
from server_directory.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Tag shared by every cached listing page and category count
SERVERS_TAG = "servers"

# Per-user key families invalidated on every rating mutation.
# Any new cached view built from a user's ratings must be added here
# (or written with the user's tag).
USER_CACHE_KEY_FAMILIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("dashboard", ()),
    ("user", ()),
    ("user", ("ratings",)),
)

_DELETE_CHUNK = 500


# =============================================================================
# Cache Key Generation
# =============================================================================

def escape_key_part(part: Any) -> str:
    """Escape the delimiter (and the escape character itself) in a key part."""
    return str(part).replace("%", "%25").replace(":", "%3A")


def make_cache_key(namespace: str, *args, **kwargs) -> str:
    """
    Generate a consistent cache key from a namespace and arguments.

    Examples:
        make_cache_key("user", "u1", "ratings") -> "user:u1:ratings"
        make_cache_key("servers", "list", page=2, sort="newest")
            -> "servers:list:page=2:sort=newest"
        make_cache_key("user", "a:b") -> "user:a%3Ab"

    None values are skipped; kwargs are sorted for stable keys.
    """
    parts = [namespace]

    for arg in args:
        if arg is not None:
            parts.append(escape_key_part(arg))

    for key in sorted(kwargs):
        value = kwargs[key]
        if value is not None:
            parts.append(f"{escape_key_part(key)}={escape_key_part(value)}")

    return ":".join(parts)


def user_tag(user_id: str) -> str:
    return make_cache_key("user", user_id)


def _physical_key(key: str) -> str:
    return f"{get_settings().cache_prefix}{key}"


def _tag_key(tag: str) -> str:
    return f"{get_settings().cache_prefix}tag:{tag}"


def _escape_glob(value: str) -> str:
    # SCAN MATCH treats these as pattern syntax
    for char in ("\\", "*", "?", "[", "]"):
        value = value.replace(char, f"\\{char}")
    return value


def _log_failure(operation: str, key: str, error: Exception) -> None:
    if not get_settings().is_production:
        logger.warning(f"Cache {operation} error for {key}: {error}")


def _client():
    if not get_settings().cache_enabled:
        return None
    return get_redis_client()


# =============================================================================
# Core Cache Operations
# =============================================================================

def cache_get(key: str) -> Optional[Any]:
    """
    Get a value from the cache.

    Returns:
        Deserialized value, or None on miss, unavailability or corrupt entry
    """
    client = _client()
    if client is None:
        return None

    try:
        value = client.get(_physical_key(key))
    except (RedisError, OSError) as e:
        _log_failure("get", key, e)
        return None

    if value is None:
        logger.debug(f"Cache MISS: {key}")
        return None

    try:
        result = json.loads(value)
    except json.JSONDecodeError as e:
        _log_failure("decode", key, e)
        return None

    logger.debug(f"Cache HIT: {key}")
    return result


def cache_set(
    key: str,
    value: Any,
    ttl: Optional[int] = None,
    tags: Iterable[str] = (),
) -> bool:
    """
    Set a value in the cache with a TTL.

    Args:
        key: Logical cache key
        value: JSON-serializable value (dates/Decimals go through str)
        ttl: Time-to-live in seconds (settings.cache_ttl if omitted)
        tags: Tags this entry depends on, for cache_invalidate_tags

    Returns:
        True if cached, False otherwise
    """
    client = _client()
    if client is None:
        return False

    if ttl is None:
        ttl = get_settings().cache_ttl

    try:
        serialized = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        _log_failure("serialization", key, e)
        return False

    physical = _physical_key(key)
    try:
        client.setex(physical, ttl, serialized)
        for tag in tags:
            tag_key = _tag_key(tag)
            client.sadd(tag_key, physical)
            # The tag set must outlive its longest-lived member
            if client.ttl(tag_key) < ttl:
                client.expire(tag_key, ttl)
    except (RedisError, OSError) as e:
        _log_failure("set", key, e)
        return False

    logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
    return True


def cache_delete(key: str) -> bool:
    """
    Delete a key from the cache.

    Returns:
        True if the delete was issued, False if Redis was unavailable
    """
    client = _client()
    if client is None:
        return False

    try:
        client.delete(_physical_key(key))
    except (RedisError, OSError) as e:
        _log_failure("delete", key, e)
        return False

    logger.debug(f"Cache DELETE: {key}")
    return True


def cache_invalidate_prefix(prefix: str) -> int:
    """
    Delete every key that starts with a logical prefix.

    Uses SCAN, so it is slow on large keyspaces; reserve it for broad,
    infrequent invalidation.

    Examples:
        cache_invalidate_prefix("user:u1")  # everything cached about u1
        cache_invalidate_prefix("servers:")

    Returns:
        Number of keys deleted
    """
    client = _client()
    if client is None:
        return 0

    pattern = f"{_escape_glob(_physical_key(prefix))}*"
    try:
        keys = list(client.scan_iter(match=pattern, count=100))
        deleted = 0
        for start in range(0, len(keys), _DELETE_CHUNK):
            deleted += client.delete(*keys[start:start + _DELETE_CHUNK])
    except (RedisError, OSError) as e:
        _log_failure("invalidate prefix", prefix, e)
        return 0

    logger.debug(f"Cache INVALIDATE PREFIX: {prefix} ({deleted} keys)")
    return deleted


def cache_invalidate_tags(*tags: str) -> int:
    """
    Delete every key written with any of the given tags.

    Returns:
        Number of cache entries deleted
    """
    client = _client()
    if client is None:
        return 0

    deleted = 0
    try:
        for tag in tags:
            tag_key = _tag_key(tag)
            members = list(client.smembers(tag_key))
            if members:
                deleted += client.delete(*members)
            client.delete(tag_key)
    except (RedisError, OSError) as e:
        _log_failure("invalidate tags", ",".join(tags), e)
        return deleted

    logger.debug(f"Cache INVALIDATE TAGS: {tags} ({deleted} keys)")
    return deleted


# =============================================================================
# Cache Invalidation Helpers
# =============================================================================

def user_cache_keys(user_id: str) -> list[str]:
    """Every fixed cache key derived from a user's ratings."""
    return [
        make_cache_key(namespace, user_id, *suffix)
        for namespace, suffix in USER_CACHE_KEY_FAMILIES
    ]


def invalidate_user_cache(user_id: str) -> None:
    """
    Invalidate the cached views of a user after one of their ratings changed.

    Deletes the enumerated key families plus anything written with the
    user's tag.
    """
    for key in user_cache_keys(user_id):
        cache_delete(key)
    cache_invalidate_tags(user_tag(user_id))


def server_cache_key(server_id: str) -> str:
    return make_cache_key("server", server_id)


def invalidate_server_listing_cache() -> None:
    """Drop cached listing pages and category counts."""
    cache_invalidate_tags(SERVERS_TAG)


def invalidate_server_cache(server_id: str) -> None:
    """
    Invalidate every cached view of a server after its aggregates changed.

    Aggregates feed listing order and rating filters, so listings go too.
    """
    cache_delete(server_cache_key(server_id))
    invalidate_server_listing_cache()


def get_cache_stats() -> dict:
    """
    Get cache statistics for monitoring.

    Returns:
        Dictionary with connection status and, when connected, hit/miss counters
    """
    client = _client()
    if client is None:
        return {"status": "disconnected"}

    try:
        info = client.info("stats")
        return {
            "status": "connected",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "keys": client.dbsize(),
        }
    except (RedisError, OSError):
        return {"status": "error"}
