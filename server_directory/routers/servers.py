"""
Servers Router

Endpoints:
- GET /servers - Filtered, sorted, paginated listing
- GET /servers/categories - Per-category counts under the same filters
- GET /servers/{server_id} - A single server
- POST /servers - Submit a user-sourced server

Listing and detail reads are throttled per IP (slowapi). Submissions are
throttled per user.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select

from server_directory.config import get_settings
from server_directory.dependencies import (
    CurrentUserId,
    DbSession,
    ServerFilters,
    enforce_rate_limit,
    get_server_or_404,
)
from server_directory.models import Server, ServerSource
from server_directory.schemas import CategoryCounts, ServerCreate, ServerListResponse, ServerResponse
from server_directory.services.cache import (
    cache_get,
    cache_set,
    invalidate_server_listing_cache,
    server_cache_key,
)
from server_directory.services.categories import categorize_server
from server_directory.services.rate_limiter import RateLimitAction, limiter
from server_directory.services.server_queries import get_cached_category_counts, get_server_listing

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(
    prefix="/servers",
    tags=["Servers"],
    responses={
        404: {"description": "Server not found"},
    },
)


# =============================================================================
# Endpoints
# =============================================================================

@router.get(
    "",
    response_model=ServerListResponse,
    summary="List servers",
    description="Filter, sort and page through the directory.",
)
@limiter.limit(settings.rate_limit_list)
def list_servers(
    request: Request,
    db: DbSession,
    filters: ServerFilters,
) -> ServerListResponse:
    """
    List servers.

    Without a source filter, the default sort (most-reviewed) groups
    user-submitted servers first, then official, then registry entries.

    Examples:
        GET /api/v1/servers?sort=top-rated&category=database
        GET /api/v1/servers?q=github&page=2
    """
    return get_server_listing(db, filters.options)


@router.get(
    "/categories",
    response_model=CategoryCounts,
    summary="Category counts",
    description="Matching servers per category; the category filter itself is ignored.",
)
@limiter.limit(settings.rate_limit_list)
def list_category_counts(
    request: Request,
    db: DbSession,
    filters: ServerFilters,
) -> CategoryCounts:
    return get_cached_category_counts(db, filters.options)


@router.get(
    "/{server_id:path}",
    response_model=ServerResponse,
    summary="Get a server",
)
@limiter.limit(settings.rate_limit_read)
def get_server(
    request: Request,
    server_id: str,
    db: DbSession,
) -> ServerResponse:
    """
    Get a single server by its "organization/name" id.

    Cached briefly; rating mutations invalidate it.
    """
    cache_key = server_cache_key(server_id)
    cached = cache_get(cache_key)
    if cached is not None:
        return ServerResponse.model_validate(cached)

    server = get_server_or_404(db, server_id)
    response = ServerResponse.model_validate(server)

    cache_set(
        cache_key,
        response.model_dump(mode="json"),
        ttl=settings.cache_ttl_server_list,
    )
    return response


@router.post(
    "",
    response_model=ServerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a server",
    dependencies=[Depends(enforce_rate_limit(RateLimitAction.SERVER_UPLOAD))],
)
def create_server(
    server_data: ServerCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> ServerResponse:
    """
    Submit a user-sourced server.

    The category is derived from the description when not given.

    Raises:
        HTTPException: 409 if a server with the same id already exists
    """
    server_id = f"{server_data.organization}/{server_data.name}"

    existing = db.execute(select(Server.id).where(Server.id == server_id)).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Server {server_id} already exists",
        )

    server = Server(
        id=server_id,
        name=server_data.name,
        organization=server_data.organization,
        description=server_data.description,
        version=server_data.version,
        repository_url=server_data.repository_url,
        category=server_data.category or categorize_server(server_data.description),
        source=ServerSource.USER.value,
        owner_id=user_id,
    )

    db.add(server)
    db.commit()
    db.refresh(server)

    invalidate_server_listing_cache()
    logger.info(f"Server {server_id} submitted by {user_id} (category: {server.category})")

    return ServerResponse.model_validate(server)
