"""
Users Router

Endpoints:
- GET /users/{user_id}/ratings - Ratings written by a user, newest first

The list is cached under user:<user_id>:ratings, one of the per-user key
families dropped on every rating mutation by that user.
"""

from fastapi import APIRouter, Request
from sqlalchemy import select

from server_directory.config import get_settings
from server_directory.dependencies import DbSession
from server_directory.models import Rating
from server_directory.schemas import RatingResponse
from server_directory.services.cache import cache_get, cache_set, make_cache_key
from server_directory.services.rate_limiter import limiter

settings = get_settings()

router = APIRouter(
    prefix="/users",
    tags=["Users"],
)


@router.get(
    "/{user_id}/ratings",
    response_model=list[RatingResponse],
    summary="List a user's ratings",
)
@limiter.limit(settings.rate_limit_read)
def list_user_ratings(
    request: Request,
    user_id: str,
    db: DbSession,
) -> list[RatingResponse]:
    cache_key = make_cache_key("user", user_id, "ratings")
    cached = cache_get(cache_key)
    if cached is not None:
        return [RatingResponse.model_validate(item) for item in cached]

    ratings = db.execute(
        select(Rating)
        .where(Rating.user_id == user_id)
        .order_by(Rating.created_at.desc(), Rating.id.desc())
    ).scalars().all()
    response = [RatingResponse.model_validate(rating) for rating in ratings]

    cache_set(
        cache_key,
        [item.model_dump(mode="json") for item in response],
        ttl=settings.cache_ttl_user_ratings,
    )
    return response
