"""
Server Model

A reviewable entry in the directory. Besides its descriptive fields it
carries denormalized rating aggregates that are written exclusively by
services.ratings.recompute_server_aggregates:

- avg_trustworthiness / avg_usefulness: means over all ratings
- total_ratings: number of ratings
- combined_score: (avg_trustworthiness + avg_usefulness) / 2
- recent_ratings_count: ratings created in the trailing window

The source_priority column is derived from source (user=1, official=2,
registry=3) so the listing can order by provenance natively.
"""

import enum
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from server_directory.database import Base

if TYPE_CHECKING:
    from server_directory.models.rating import Rating


class ServerSource(str, enum.Enum):
    """Where a server entry came from."""

    REGISTRY = "registry"
    USER = "user"
    OFFICIAL = "official"


# Lower value sorts first in the default listing
SOURCE_PRIORITY: dict[str, int] = {
    ServerSource.USER.value: 1,
    ServerSource.OFFICIAL.value: 2,
    ServerSource.REGISTRY.value: 3,
}
UNKNOWN_SOURCE_PRIORITY = 4


def source_priority(source: str | None) -> int:
    """Map a source value to its listing priority."""
    if isinstance(source, ServerSource):
        source = source.value
    return SOURCE_PRIORITY.get(source or "", UNKNOWN_SOURCE_PRIORITY)


class Server(Base):
    """
    Server model representing a directory entry.

    Table: servers

    Indexes:
    - name, category, source: filtering
    - total_ratings, combined_score, recent_ratings_count, created_at: sorting
    - source_priority: default listing order
    """

    __tablename__ = "servers"

    # "organization/name"
    id: Mapped[str] = mapped_column(String(201), primary_key=True)

    name: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    organization: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    repository_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    category: Mapped[str] = mapped_column(
        String(20),
        index=True,
        nullable=False,
        default="other",
        server_default="other",
    )
    source: Mapped[str] = mapped_column(
        String(20),
        index=True,
        nullable=False,
        default=ServerSource.REGISTRY.value,
    )
    source_priority: Mapped[int] = mapped_column(
        Integer,
        index=True,
        nullable=False,
        default=SOURCE_PRIORITY[ServerSource.REGISTRY.value],
        comment="Derived from source; user=1, official=2, registry=3",
    )
    # Uploader of a user-sourced server
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # -------------------------------------------------------------------------
    # Rating aggregates
    # -------------------------------------------------------------------------
    avg_trustworthiness: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default="0"
    )
    avg_usefulness: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default="0"
    )
    total_ratings: Mapped[int] = mapped_column(
        Integer, index=True, nullable=False, default=0, server_default="0"
    )
    combined_score: Mapped[float] = mapped_column(
        Float, index=True, nullable=False, default=0.0, server_default="0"
    )
    recent_ratings_count: Mapped[int] = mapped_column(
        Integer, index=True, nullable=False, default=0, server_default="0"
    )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        index=True,
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    ratings: Mapped[list["Rating"]] = relationship(
        "Rating",
        back_populates="server",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @validates("source")
    def _sync_source_priority(self, key: str, value: str) -> str:
        # Keep the derived column in step with every source assignment
        if isinstance(value, ServerSource):
            value = value.value
        self.source_priority = source_priority(value)
        return value

    def __repr__(self) -> str:
        return f"Server(id='{self.id}', source='{self.source}', total_ratings={self.total_ratings})"
