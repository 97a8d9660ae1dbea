"""
Server Pydantic Schemas

Schemas:
- ServerCreate: Register a user-submitted server
- ServerResponse: Server with its rating aggregates
- ServerListResponse: Paginated listing
- CategoryCounts: Facet counts for a listing
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from server_directory.services.categories import CATEGORIES

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class ServerCreate(BaseModel):
    """
    Schema for submitting a server.

    The id is derived as "organization/name". When category is omitted it
    is assigned from the description.

    Example request body:
    {
        "name": "postgres-mcp",
        "organization": "acme",
        "description": "Query PostgreSQL databases",
        "repository_url": "https://github.com/acme/postgres-mcp"
    }
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Server name (letters, digits, '.', '_', '-')",
        examples=["postgres-mcp"],
    )
    organization: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Publishing organization or user",
        examples=["acme"],
    )
    description: str | None = Field(
        default=None,
        max_length=5000,
        description="What the server does",
    )
    version: str | None = Field(default=None, max_length=50)
    repository_url: str | None = Field(
        default=None,
        max_length=500,
        description="Source repository link",
    )
    category: str | None = Field(
        default=None,
        description=f"One of: {', '.join(CATEGORIES)}",
    )

    @field_validator("name", "organization")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Names become part of the id, so no slashes or whitespace."""
        v = v.strip()
        if not _NAME_PATTERN.match(v):
            raise ValueError("Must contain only letters, digits, '.', '_' or '-'")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        if v not in CATEGORIES:
            raise ValueError(f"Unknown category: {v}")
        return v

    @field_validator("repository_url")
    @classmethod
    def blank_url_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class ServerResponse(BaseModel):
    """Server with its denormalized rating aggregates."""

    id: str = Field(..., description="Server identifier ('organization/name')")
    name: str
    organization: str | None = None
    description: str | None = None
    version: str | None = None
    repository_url: str | None = None
    category: str
    source: str

    avg_trustworthiness: float = Field(..., ge=0, le=5)
    avg_usefulness: float = Field(..., ge=0, le=5)
    total_ratings: int = Field(..., ge=0)
    combined_score: float = Field(..., ge=0, le=5)
    recent_ratings_count: int = Field(..., ge=0)

    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "acme/postgres-mcp",
                "name": "postgres-mcp",
                "organization": "acme",
                "description": "Query PostgreSQL databases",
                "version": "1.2.0",
                "repository_url": "https://github.com/acme/postgres-mcp",
                "category": "database",
                "source": "registry",
                "avg_trustworthiness": 4.5,
                "avg_usefulness": 4.0,
                "total_ratings": 12,
                "combined_score": 4.25,
                "recent_ratings_count": 3,
                "created_at": "2025-01-15T10:30:00Z",
                "updated_at": "2025-01-20T08:00:00Z",
            }
        },
    )


class ServerListResponse(BaseModel):
    """Paginated server listing."""

    items: list[ServerResponse] = Field(..., description="Servers on this page")
    total: int = Field(..., ge=0, description="Servers matching the filters")
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1, description="Items per page")
    total_pages: int = Field(..., ge=0, description="ceil(total / page_size)")


class CategoryCounts(BaseModel):
    """
    Matching servers per category.

    Every category is present (0 when empty) and the categories sum to total.
    """

    total: int = Field(..., ge=0)
    database: int = 0
    search: int = 0
    code: int = 0
    web: int = 0
    ai: int = 0
    data: int = 0
    tools: int = 0
    other: int = 0
