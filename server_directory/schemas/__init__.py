"""
Pydantic Schemas Package

Request/response models, kept separate from the SQLAlchemy models so the
API controls exactly what is exposed.

Schema Naming Convention:
- XxxCreate: Fields required when creating a record
- XxxUpdate: Fields allowed when updating (all optional)
- XxxResponse: Fields returned in API responses
"""

from server_directory.schemas.rating import (
    FlagResponse,
    RatingCreate,
    RatingResponse,
    RatingUpdate,
    VoteRequest,
    VoteResponse,
)
from server_directory.schemas.server import (
    CategoryCounts,
    ServerCreate,
    ServerListResponse,
    ServerResponse,
)

__all__ = [
    # Server
    "ServerCreate",
    "ServerResponse",
    "ServerListResponse",
    "CategoryCounts",
    # Rating
    "RatingCreate",
    "RatingUpdate",
    "RatingResponse",
    "VoteRequest",
    "VoteResponse",
    "FlagResponse",
]
