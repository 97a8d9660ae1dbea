"""
SQLAlchemy Models Package

Model Relationships:
- Server -> Rating: One-to-Many (a server collects many ratings,
                    one per user)
- Rating -> ReviewVote / ReviewFlag: One-to-Many

Import all models here so Alembic discovers them for migrations.
"""

from server_directory.models.server import (
    SOURCE_PRIORITY,
    Server,
    ServerSource,
    source_priority,
)
from server_directory.models.rating import Rating, RatingStatus, ReviewFlag, ReviewVote

__all__ = [
    "Server",
    "ServerSource",
    "SOURCE_PRIORITY",
    "source_priority",
    "Rating",
    "RatingStatus",
    "ReviewVote",
    "ReviewFlag",
]
