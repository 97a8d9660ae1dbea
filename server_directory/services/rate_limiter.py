"""
Rate Limiting Service

Two layers of throttling:

1. Per-subject/action limits for mutations (rating submission, votes,
   flags, uploads). `RateLimiter.check(key, limit, window_ms)` counts hits
   in a shared Redis counter and degrades to a per-process store when
   Redis is unreachable.

2. Anonymous per-IP limits on read endpoints, via slowapi decorators
   (same pattern as any slowapi app: `@limiter.limit(...)`).

Stores
======
- RedisRateLimitStore: INCR the key; on the increment that creates it,
  PEXPIRE it to the window length; PTTL gives the reset time.
- InMemoryRateLimitStore: dict of key -> RateLimitRecord guarded by a
  lock (FastAPI runs sync routes in a thread pool). Expired records are
  garbage-collected at most once per cleanup interval.

The local store is per process: with N instances the effective global
limit is N x limit. It is a degraded mode, never the production guarantee.

Policy Table (defaults, see config.py):
- ratings: 10/minute/user
- server_upload: 5/hour/user
- icon_upload: 10/hour/user
- votes: 30/minute/user
- flags: 10/hour/user
- sync: 1/minute (global)
- read: 100/minute/IP
- server_list: 60/minute/IP
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Request
from limits import parse as parse_limit
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from server_directory.config import Settings, get_settings
from server_directory.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)
settings = get_settings()


# =============================================================================
# Results and Policies
# =============================================================================

@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one check."""

    allowed: bool
    remaining: int
    reset_in_ms: int

    @property
    def reset_in_seconds(self) -> int:
        """Seconds until the window resets, rounded up (for Retry-After)."""
        return math.ceil(self.reset_in_ms / 1000)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_ms: int

    @classmethod
    def parse(cls, value: str) -> "RateLimitPolicy":
        """
        Build a policy from either "limit/window_ms" or slowapi notation.

        Examples:
            RateLimitPolicy.parse("10/60000")   -> 10 per 60s
            RateLimitPolicy.parse("100/minute") -> 100 per 60s
        """
        amount, _, window = value.partition("/")
        if window.isdigit():
            return cls(limit=int(amount), window_ms=int(window))
        item = parse_limit(value)
        return cls(limit=item.amount, window_ms=item.get_expiry() * 1000)


class RateLimitAction(str, Enum):
    RATINGS = "ratings"
    SERVER_UPLOAD = "server_upload"
    ICON_UPLOAD = "icon_upload"
    VOTES = "votes"
    FLAGS = "flags"
    SYNC = "sync"
    READ = "read"
    SERVER_LIST = "server_list"


def get_rate_limit_policies(config: Optional[Settings] = None) -> dict[RateLimitAction, RateLimitPolicy]:
    """Build the policy table from configuration."""
    config = config or get_settings()
    return {
        RateLimitAction.RATINGS: RateLimitPolicy.parse(config.rate_limit_ratings),
        RateLimitAction.SERVER_UPLOAD: RateLimitPolicy.parse(config.rate_limit_server_upload),
        RateLimitAction.ICON_UPLOAD: RateLimitPolicy.parse(config.rate_limit_icon_upload),
        RateLimitAction.VOTES: RateLimitPolicy.parse(config.rate_limit_votes),
        RateLimitAction.FLAGS: RateLimitPolicy.parse(config.rate_limit_flags),
        RateLimitAction.SYNC: RateLimitPolicy.parse(config.rate_limit_sync),
        RateLimitAction.READ: RateLimitPolicy.parse(config.rate_limit_read),
        RateLimitAction.SERVER_LIST: RateLimitPolicy.parse(config.rate_limit_list),
    }


class RateLimitExceededError(Exception):
    """Raised when a subject exhausted its budget for an action."""

    def __init__(self, result: RateLimitResult, action: str) -> None:
        self.result = result
        self.action = action
        super().__init__(
            f"Rate limit exceeded for {action}; resets in {result.reset_in_ms}ms"
        )


# =============================================================================
# Key Helpers
# =============================================================================

def get_rate_limit_key(user_id: str, action: str) -> str:
    """Key for a signed-in subject and action."""
    return f"{user_id}:{action}"


def get_ip_rate_limit_key(ip: str, action: str) -> str:
    """Key for an anonymous caller and action."""
    return f"ip:{ip}:{action}"


def get_client_ip(request: Request) -> str:
    """
    Get client IP address for rate limiting.

    Prefers headers set by the edge (Vercel, Cloudflare), then the common
    proxy headers, then the socket peer.
    """
    vercel_forwarded_for = request.headers.get("x-vercel-forwarded-for")
    if vercel_forwarded_for:
        return vercel_forwarded_for.split(",")[0].strip()

    cf_connecting_ip = request.headers.get("cf-connecting-ip")
    if cf_connecting_ip:
        return cf_connecting_ip.strip()

    # X-Forwarded-For can contain multiple IPs; first is the client
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or "unknown"

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request) or "unknown"


# =============================================================================
# Stores
# =============================================================================

class RateLimitStore(ABC):
    """Counts hits for a key inside a fixed window."""

    @abstractmethod
    def hit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """Record one hit and report whether it is within the limit."""


class RedisRateLimitStore(RateLimitStore):
    """Shared fixed-window counter in Redis."""

    key_prefix = "ratelimit:"

    def __init__(self, client_factory: Callable = get_redis_client) -> None:
        self._client_factory = client_factory

    def hit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        client = self._client_factory()
        if client is None:
            raise RedisConnectionError("Redis is unavailable")

        redis_key = f"{self.key_prefix}{key}"
        count = client.incr(redis_key)
        if count == 1:
            client.pexpire(redis_key, window_ms)

        ttl_ms = client.pttl(redis_key)
        if ttl_ms == -1:
            # Counter survived without an expiry (process died between
            # INCR and PEXPIRE); re-arm it so the key cannot block forever
            client.pexpire(redis_key, window_ms)
            ttl_ms = window_ms
        reset_in_ms = ttl_ms if ttl_ms > 0 else window_ms

        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_in_ms=reset_in_ms,
        )


@dataclass
class RateLimitRecord:
    """Local counter state for one key, alive only within its window."""

    count: int
    window_start_ms: int
    limit: int
    window_ms: int


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class InMemoryRateLimitStore(RateLimitStore):
    """
    Per-process fixed-window counter.

    Args:
        cleanup_interval_ms: Minimum time between sweeps of expired records
        clock: Millisecond clock; injectable for deterministic tests
    """

    def __init__(
        self,
        cleanup_interval_ms: int = 60_000,
        clock: Callable[[], int] = _monotonic_ms,
    ) -> None:
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._cleanup_interval_ms = cleanup_interval_ms
        self._last_cleanup_ms = clock()

    def __len__(self) -> int:
        return len(self._records)

    def hit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            record = self._records.get(key)
            if record is None or now - record.window_start_ms >= window_ms:
                record = RateLimitRecord(
                    count=1, window_start_ms=now, limit=limit, window_ms=window_ms
                )
                self._records[key] = record
            else:
                record.count += 1
                record.limit = limit

            return RateLimitResult(
                allowed=record.count <= limit,
                remaining=max(0, limit - record.count),
                reset_in_ms=max(0, record.window_start_ms + window_ms - now),
            )

    def _cleanup_expired(self, now: int) -> None:
        if now - self._last_cleanup_ms < self._cleanup_interval_ms:
            return
        self._last_cleanup_ms = now
        expired = [
            key for key, record in self._records.items()
            if now - record.window_start_ms >= record.window_ms
        ]
        for key in expired:
            del self._records[key]
        if expired:
            logger.debug(f"Rate limit GC removed {len(expired)} local records")


# =============================================================================
# Limiter
# =============================================================================

class RateLimiter:
    """
    Check hits against the primary store, falling back to the local store.

    Args:
        primary: Shared store, or None to run on the local store only
        fallback: Per-process store used when the primary is unreachable
    """

    def __init__(
        self,
        primary: Optional[RateLimitStore],
        fallback: InMemoryRateLimitStore,
    ) -> None:
        self.primary = primary
        self.fallback = fallback

    @property
    def mode(self) -> str:
        return "redis" if self.primary is not None else "memory"

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        if self.primary is not None:
            try:
                return self.primary.hit(key, limit, window_ms)
            except (RedisError, OSError) as e:
                if not get_settings().is_production:
                    logger.warning(
                        f"Redis unavailable, using in-memory rate limiting fallback: {e}"
                    )
        return self.fallback.hit(key, limit, window_ms)

    def check_policy(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        return self.check(key, policy.limit, policy.window_ms)


def create_rate_limiter(config: Optional[Settings] = None) -> RateLimiter:
    """Build a limiter whose primary store is selected by configuration."""
    config = config or get_settings()
    primary = RedisRateLimitStore() if config.rate_limit_storage == "redis" else None
    fallback = InMemoryRateLimitStore(cleanup_interval_ms=config.rate_limit_cleanup_interval_ms)
    return RateLimiter(primary=primary, fallback=fallback)


_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """
    Process-wide limiter, created on first use.

    Also the FastAPI dependency routes use, so tests can override it.
    """
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = create_rate_limiter()
                logger.info(f"Rate limiter initialized - mode: {_rate_limiter.mode}")
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter (and its local records)."""
    global _rate_limiter
    with _rate_limiter_lock:
        _rate_limiter = None


# =============================================================================
# Anonymous per-IP limits (slowapi)
# =============================================================================

def create_limiter() -> Limiter:
    """
    Create the slowapi limiter for anonymous read endpoints.

    Shares Redis with the subject limiter when configured, and keeps
    counting in memory if Redis goes away.
    """
    storage_uri = settings.redis_url if settings.rate_limit_storage == "redis" else "memory://"

    limiter = Limiter(
        key_func=get_client_ip,
        storage_uri=storage_uri,
        strategy="fixed-window",
        in_memory_fallback_enabled=True,
        enabled=settings.rate_limit_enabled,
    )

    logger.info(
        f"IP rate limiter initialized - enabled: {settings.rate_limit_enabled}, "
        f"read: {settings.rate_limit_read}, list: {settings.rate_limit_list}"
    )
    return limiter


limiter = create_limiter()


def rate_limited_response(message: str, remaining: int, reset_in_seconds: int) -> JSONResponse:
    """429 body and headers shared by both throttling layers."""
    return JSONResponse(
        status_code=429,
        content={"error": {"code": "RATE_LIMITED", "message": message}},
        headers={
            "Retry-After": str(reset_in_seconds),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_in_seconds),
        },
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handler for slowapi's RateLimitExceeded (anonymous endpoints)."""
    reset_in_seconds = exc.limit.limit.get_expiry() if exc.limit is not None else 60
    logger.warning(f"Rate limit exceeded for {get_client_ip(request)}: {exc.detail}")
    return rate_limited_response(
        "Too many requests. Please try again later.", 0, reset_in_seconds
    )
