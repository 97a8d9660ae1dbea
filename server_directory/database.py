"""
Database Configuration Module

SQLAlchemy 2.0 engine, session factory and declarative base.

Session Management Pattern
==========================
We use the "session per request" pattern:
1. Request arrives → create a new session
2. Use the session for the rating write AND the aggregate recompute
3. Commit once on success, rollback on failure
4. Close the session when the request ends
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from server_directory.config import get_settings

settings = get_settings()


# =============================================================================
# Database Engine
# =============================================================================
# pool_pre_ping tests connection health before handing it out.
# SQLite URLs (local runs) don't accept pool sizing arguments.

_engine_kwargs: dict = {"pool_pre_ping": True, "echo": settings.debug}
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )

engine = create_engine(settings.database_url, **_engine_kwargs)


# =============================================================================
# Session Factory
# =============================================================================
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Alembic uses Base.metadata to discover models for migrations.
    """
    pass


# =============================================================================
# Dependency Injection
# =============================================================================
def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI.

    Yields a session and closes it when the request ends, even if the
    handler raised.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

