"""
pytest Fixtures for Server Directory Tests

Shared fixtures:
- engine / db_session: SQLite in-memory database, one transaction per
  test that is rolled back afterwards
- fake_redis: in-process stand-in for the handful of Redis commands the
  cache and rate limiter use, on a clock the test controls
- rate_limiter: fresh per-test limiter running on the local store
- client: TestClient wired to the test session and limiter
- make_server / make_rating: sample data factories

For database tests, we use:
- session scope for engine (expensive to create)
- function scope for sessions (isolation between tests)
"""

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# IMPORTANT: Set environment variables BEFORE importing the app
import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["RATE_LIMIT_STORAGE"] = "memory"
# Anonymous per-IP limits share one in-memory counter across the whole run
os.environ["RATE_LIMIT_READ"] = "10000/minute"
os.environ["RATE_LIMIT_LIST"] = "10000/minute"

import math
import re
from collections.abc import Callable, Generator
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from server_directory.database import Base, get_db
from server_directory.main import app
from server_directory.models import Rating, Server
from server_directory.services.rate_limiter import (
    InMemoryRateLimitStore,
    RateLimiter,
    get_rate_limiter,
)
from server_directory.services.redis_client import set_redis_client


# =============================================================================
# FAKE REDIS
# =============================================================================

def _glob_to_regex(pattern: str) -> re.Pattern:
    """Redis MATCH glob (with backslash escapes) as a regex."""
    parts = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


class FakeRedis:
    """
    Minimal in-memory Redis.

    Strings, integer counters and sets with millisecond expiry, driven by
    `now` (seconds) which tests move forward with advance().
    """

    def __init__(self) -> None:
        self.now = 1_000_000.0
        self.data: dict[str, object] = {}
        self.expires_at: dict[str, float] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.now >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.data

    # -- connection ----------------------------------------------------------
    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def info(self, section: str | None = None) -> dict:
        return {"keyspace_hits": 0, "keyspace_misses": 0}

    def dbsize(self) -> int:
        return sum(1 for key in list(self.data) if self._exists(key))

    # -- strings -------------------------------------------------------------
    def get(self, key: str):
        if not self._exists(key):
            return None
        return self.data[key]

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.data[key] = value
        self.expires_at[key] = self.now + ttl
        return True

    def incr(self, key: str) -> int:
        value = int(self.data[key]) + 1 if self._exists(key) else 1
        self.data[key] = str(value)
        return value

    def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._exists(key):
                deleted += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return deleted

    def scan_iter(self, match: str | None = None, count: int | None = None):
        regex = _glob_to_regex(match) if match else None
        for key in list(self.data):
            if self._exists(key) and (regex is None or regex.match(key)):
                yield key

    # -- sets ----------------------------------------------------------------
    def sadd(self, key: str, *members: str) -> int:
        current = self.data.get(key) if self._exists(key) else None
        if current is None:
            current = set()
            self.data[key] = current
        before = len(current)
        current.update(members)
        return len(current) - before

    def smembers(self, key: str) -> set:
        if not self._exists(key):
            return set()
        return set(self.data[key])

    # -- expiry --------------------------------------------------------------
    def expire(self, key: str, seconds: int) -> bool:
        return self.pexpire(key, seconds * 1000)

    def pexpire(self, key: str, milliseconds: int) -> bool:
        if not self._exists(key):
            return False
        self.expires_at[key] = self.now + milliseconds / 1000
        return True

    def pttl(self, key: str) -> int:
        if not self._exists(key):
            return -2
        if key not in self.expires_at:
            return -1
        return int(round((self.expires_at[key] - self.now) * 1000))

    def ttl(self, key: str) -> int:
        remaining = self.pttl(key)
        if remaining < 0:
            return remaining
        return math.ceil(remaining / 1000)


@pytest.fixture(autouse=True)
def fake_redis() -> Generator[FakeRedis, None, None]:
    """Install a fresh FakeRedis as the shared client for every test."""
    fake = FakeRedis()
    set_redis_client(fake)
    yield fake
    set_redis_client(None)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def engine():
    """
    Create a SQLite in-memory database engine.

    StaticPool keeps the single connection alive for the entire session.
    Foreign keys are switched on so rating deletes cascade to votes/flags.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """
    Database session wrapped in a transaction that's rolled back.

    Commits inside the code under test don't escape the outer transaction.
    """
    TestSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )

    connection = engine.connect()
    transaction = connection.begin()
    session = TestSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """Per-test limiter on the local store, so counts never leak between tests."""
    return RateLimiter(primary=None, fallback=InMemoryRateLimitStore())


@pytest.fixture(scope="function")
def client(db_session: Session, rate_limiter: RateLimiter) -> Generator[TestClient, None, None]:
    """Test client using the test database session and limiter."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_server(db_session: Session) -> Callable[..., Server]:
    """
    Factory for servers.

    Aggregates can be given directly; combined_score defaults to the mean
    of the two averages.
    """

    def factory(
        name: str,
        organization: str = "acme",
        source: str = "registry",
        category: str = "other",
        total_ratings: int = 0,
        avg_trustworthiness: float = 0.0,
        avg_usefulness: float = 0.0,
        recent_ratings_count: int = 0,
        created_at: datetime | None = None,
        **kwargs,
    ) -> Server:
        server = Server(
            id=f"{organization}/{name}",
            name=name,
            organization=organization,
            source=source,
            category=category,
            total_ratings=total_ratings,
            avg_trustworthiness=avg_trustworthiness,
            avg_usefulness=avg_usefulness,
            combined_score=(avg_trustworthiness + avg_usefulness) / 2,
            recent_ratings_count=recent_ratings_count,
            created_at=created_at or datetime.now(UTC),
            **kwargs,
        )
        db_session.add(server)
        db_session.commit()
        db_session.refresh(server)
        return server

    return factory


@pytest.fixture
def make_rating(db_session: Session) -> Callable[..., Rating]:
    """Factory for ratings (no aggregate recompute)."""

    def factory(
        server: Server,
        user_id: str,
        trustworthiness: int = 4,
        usefulness: int = 4,
        **kwargs,
    ) -> Rating:
        rating = Rating(
            server_id=server.id,
            user_id=user_id,
            trustworthiness=trustworthiness,
            usefulness=usefulness,
            **kwargs,
        )
        db_session.add(rating)
        db_session.commit()
        db_session.refresh(rating)
        return rating

    return factory


@pytest.fixture
def sample_server(make_server) -> Server:
    """A registry server with no ratings."""
    return make_server(
        "postgres-mcp",
        description="Query PostgreSQL databases",
        category="database",
        repository_url="https://github.com/acme/postgres-mcp",
    )
