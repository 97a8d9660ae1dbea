"""
FastAPI Dependencies Module

Reusable components injected into route handlers with Depends():
- Database session (per request)
- Caller identity (opaque X-User-Id header)
- Listing filters (permissively parsed query parameters)
- Per-user rate limiting for mutations
"""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from server_directory.config import get_settings
from server_directory.database import get_db
from server_directory.models import Rating, Server
from server_directory.services.rate_limiter import (
    RateLimitAction,
    RateLimiter,
    RateLimitExceededError,
    get_rate_limit_key,
    get_rate_limit_policies,
    get_rate_limiter,
)
from server_directory.services.server_queries import ServerQueryOptions

# =============================================================================
# Type Aliases with Annotated
# =============================================================================

DbSession = Annotated[Session, Depends(get_db)]


# =============================================================================
# Caller Identity
# =============================================================================
def get_current_user_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> str:
    """
    Identify the caller from the X-User-Id header.

    Identity is resolved upstream (gateway or session layer); this service
    only needs a stable opaque id.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User identity required. Provide X-User-Id header.",
        )
    if len(user_id) > 64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id must be at most 64 characters.",
        )
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


# =============================================================================
# Server Listing Filters
# =============================================================================
class ServerFilterParams:
    """
    Filter, sort and paging parameters for server listings.

    Parameters arrive as plain strings and are parsed permissively: a
    malformed value never fails the request, it just drops that filter.

    Usage:
        GET /api/v1/servers?q=postgres&category=database&sort=top-rated
        GET /api/v1/servers?source=user&min_rating=3&page=2&page_size=50
        GET /api/v1/servers?date_from=2025-01-01&has_github=true
    """

    def __init__(
        self,
        q: str | None = Query(
            default=None,
            max_length=200,
            description="Search name, organization and description",
            examples=["postgres"],
        ),
        category: str | None = Query(default=None, description="Category or 'all'"),
        source: str | None = Query(
            default=None,
            description="registry, user, official or 'all'",
        ),
        min_rating: str | None = Query(default=None, description="Minimum avg trustworthiness"),
        max_rating: str | None = Query(default=None, description="Maximum avg trustworthiness"),
        date_from: str | None = Query(default=None, description="Created on or after (YYYY-MM-DD)"),
        date_to: str | None = Query(default=None, description="Created on or before (YYYY-MM-DD)"),
        has_github: str | None = Query(default=None, description="Only servers with a repository"),
        sort: str | None = Query(
            default=None,
            description="most-reviewed (default), top-rated, newest, trending",
        ),
        page: str | None = Query(default=None, description="Page number (1-indexed)"),
        page_size: str | None = Query(default=None, description="Items per page"),
    ) -> None:
        self.options = ServerQueryOptions.from_params(
            search=q,
            category=category,
            source=source,
            min_rating=min_rating,
            max_rating=max_rating,
            date_from=date_from,
            date_to=date_to,
            has_github=has_github,
            sort=sort,
            page=page,
            page_size=page_size,
        )


ServerFilters = Annotated[ServerFilterParams, Depends()]


# =============================================================================
# Per-user Rate Limiting
# =============================================================================
def enforce_rate_limit(action: RateLimitAction) -> Callable[..., None]:
    """
    Dependency factory that throttles the current user for an action.

    Usage:
        @router.post("/", dependencies=[Depends(enforce_rate_limit(RateLimitAction.RATINGS))])

    Raises:
        RateLimitExceededError: When the user's budget is exhausted
            (rendered as 429 by the app's exception handler)
    """

    def dependency(
        user_id: CurrentUserId,
        rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        settings = get_settings()
        if not settings.rate_limit_enabled:
            return

        policy = get_rate_limit_policies(settings)[action]
        result = rate_limiter.check_policy(get_rate_limit_key(user_id, action.value), policy)
        if not result.allowed:
            raise RateLimitExceededError(result, action.value)

    return dependency


# =============================================================================
# Resource Lookups
# =============================================================================
def get_server_or_404(db: Session, server_id: str) -> Server:
    """
    Get a server by ID or raise 404.

    Raises:
        HTTPException: 404 if server not found
    """
    server = db.execute(select(Server).where(Server.id == server_id)).scalar_one_or_none()

    if server is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Server {server_id} not found",
        )

    return server


def get_rating_or_404(db: Session, rating_id: int) -> Rating:
    """
    Get a rating by ID or raise 404.

    Raises:
        HTTPException: 404 if rating not found
    """
    rating = db.execute(select(Rating).where(Rating.id == rating_id)).scalar_one_or_none()

    if rating is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rating with id {rating_id} not found",
        )

    return rating
