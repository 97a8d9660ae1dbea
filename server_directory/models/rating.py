"""
Rating Model

A user's trustworthiness/usefulness scores (and optional review text) for
one server, plus the helpfulness votes and moderation flags other users
leave on it.

Business Rules:
- One rating per user per server (unique constraint)
- Both scores must be 1-5
- Only the rating author can edit or delete it
- Users cannot vote on or flag their own review
- A review is marked "flagged" once it collects flag_threshold flags
"""

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from server_directory.database import Base


class RatingStatus(str, enum.Enum):
    APPROVED = "approved"
    FLAGGED = "flagged"


class Rating(Base):
    """
    Rating model.

    Attributes:
        id: Primary key
        server_id: Foreign key to servers table
        user_id: Opaque identifier of the author
        trustworthiness: 1-5
        usefulness: 1-5
        text: Optional review text
        status: approved or flagged
        helpful_count / not_helpful_count: Denormalized vote tallies
        flag_count: Denormalized number of distinct flags
    """

    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    server_id: Mapped[str] = mapped_column(
        String(201),
        ForeignKey("servers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    trustworthiness: Mapped[int] = mapped_column(Integer, nullable=False)
    usefulness: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RatingStatus.APPROVED.value,
    )

    helpful_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    not_helpful_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flag_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    server = relationship("Server", back_populates="ratings")
    votes: Mapped[list["ReviewVote"]] = relationship(
        "ReviewVote",
        back_populates="rating",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    flags: Mapped[list["ReviewFlag"]] = relationship(
        "ReviewFlag",
        back_populates="rating",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("server_id", "user_id", name="uq_rating_server_user"),
        CheckConstraint(
            "trustworthiness >= 1 AND trustworthiness <= 5",
            name="ck_rating_trustworthiness_range",
        ),
        CheckConstraint(
            "usefulness >= 1 AND usefulness <= 5",
            name="ck_rating_usefulness_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Rating(id={self.id}, server_id={self.server_id}, user_id={self.user_id}, "
            f"trustworthiness={self.trustworthiness}, usefulness={self.usefulness})>"
        )


class ReviewVote(Base):
    """A helpful / not helpful vote on a review."""

    __tablename__ = "review_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rating_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("ratings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    helpful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    rating = relationship("Rating", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("rating_id", "user_id", name="uq_review_vote_rating_user"),
    )


class ReviewFlag(Base):
    """A moderation flag on a review. One per user per review."""

    __tablename__ = "review_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rating_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("ratings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    rating = relationship("Rating", back_populates="flags")

    __table_args__ = (
        UniqueConstraint("rating_id", "user_id", name="uq_review_flag_rating_user"),
    )
