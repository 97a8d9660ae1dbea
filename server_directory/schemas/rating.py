"""
Rating Pydantic Schemas

Schemas:
- RatingCreate: Submit (or replace) the caller's rating for a server
- RatingUpdate: Partial update of an existing rating
- RatingResponse: Rating data for API responses
- VoteRequest / VoteResponse: Helpful / not helpful votes
- FlagResponse: Result of flagging a review

Business Rules:
- Scores must be 1-5 (validated here and by a database check constraint)
- One rating per user per server (enforced at database level)
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_text(v: str | None) -> str | None:
    if v is not None:
        v = v.strip()
        if not v:
            return None
    return v


class RatingCreate(BaseModel):
    """
    Schema for rating a server.

    Example request body:
    {
        "server_id": "acme/postgres-mcp",
        "trustworthiness": 5,
        "usefulness": 4,
        "text": "Solid and well maintained"
    }
    """

    server_id: str = Field(..., min_length=1, max_length=201)
    trustworthiness: int = Field(..., ge=1, le=5, examples=[5])
    usefulness: int = Field(..., ge=1, le=5, examples=[4])
    text: str | None = Field(default=None, max_length=5000)

    @field_validator("text")
    @classmethod
    def text_must_not_be_blank(cls, v: str | None) -> str | None:
        return _strip_text(v)


class RatingUpdate(BaseModel):
    """All fields optional for PATCH-style updates."""

    trustworthiness: int | None = Field(default=None, ge=1, le=5)
    usefulness: int | None = Field(default=None, ge=1, le=5)
    text: str | None = Field(default=None, max_length=5000)

    @field_validator("text")
    @classmethod
    def text_must_not_be_blank(cls, v: str | None) -> str | None:
        return _strip_text(v)


class RatingResponse(BaseModel):
    id: int
    server_id: str
    user_id: str
    trustworthiness: int
    usefulness: int
    text: str | None = None
    status: str
    helpful_count: int = 0
    not_helpful_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VoteRequest(BaseModel):
    helpful: bool = Field(..., description="True for helpful, False for not helpful")


class VoteResponse(BaseModel):
    rating_id: int
    helpful_count: int
    not_helpful_count: int


class FlagResponse(BaseModel):
    rating_id: int
    flag_count: int
    status: str
