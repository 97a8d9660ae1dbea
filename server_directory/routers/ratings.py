"""
Ratings Router

Endpoints:
- POST /ratings - Create or replace the caller's rating for a server
- PATCH /ratings/{rating_id} - Update a rating (owner only)
- DELETE /ratings/{rating_id} - Delete a rating (owner only)
- POST /ratings/{rating_id}/vote - Vote a review helpful / not helpful
- POST /ratings/{rating_id}/flag - Flag a review for moderation

Every rating mutation follows the same sequence:
1. Per-user rate limit check (before touching storage)
2. Rating write, flushed but not committed
3. Aggregate recompute for the server, in the same transaction
4. One commit
5. Cache invalidation for the author and the server listings

If the recompute fails, nothing is committed and the request fails with
a 500: a rating is never reported saved while its aggregates are stale.

Business Rules:
- One rating per user per server (enforced by database constraint)
- Users cannot rate a server they submitted
- Only the rating author can update or delete it
- Users cannot vote on or flag their own review
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from server_directory.config import get_settings
from server_directory.dependencies import (
    CurrentUserId,
    DbSession,
    enforce_rate_limit,
    get_rating_or_404,
    get_server_or_404,
)
from server_directory.models import Rating, RatingStatus, ReviewFlag, ReviewVote
from server_directory.schemas import (
    FlagResponse,
    RatingCreate,
    RatingResponse,
    RatingUpdate,
    VoteRequest,
    VoteResponse,
)
from server_directory.services.cache import invalidate_server_cache, invalidate_user_cache
from server_directory.services.rate_limiter import RateLimitAction
from server_directory.services.ratings import recompute_server_aggregates

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(
    prefix="/ratings",
    tags=["Ratings"],
    responses={
        404: {"description": "Rating or server not found"},
    },
)

RatingsRateLimit = Depends(enforce_rate_limit(RateLimitAction.RATINGS))


# =============================================================================
# Helper Functions
# =============================================================================
def _commit_with_aggregates(db: DbSession, server_id: str) -> None:
    """Flush the pending rating write, recompute aggregates and commit once."""
    db.flush()
    recompute_server_aggregates(db, server_id, commit=False)
    db.commit()


def _require_owner(rating: Rating, user_id: str, action: str) -> None:
    if rating.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You can only {action} your own ratings",
        )


def _forbid_own_review(rating: Rating, user_id: str, action: str) -> None:
    if rating.user_id == user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You cannot {action} your own review",
        )


# =============================================================================
# Rating Endpoints
# =============================================================================

@router.post(
    "",
    response_model=RatingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Rate a server",
    description="Create the caller's rating for a server, or replace it if one exists.",
    dependencies=[RatingsRateLimit],
)
def submit_rating(
    rating_data: RatingCreate,
    db: DbSession,
    user_id: CurrentUserId,
) -> RatingResponse:
    """
    Create or replace the caller's rating for a server.

    Raises:
        HTTPException: 404 if the server does not exist
        HTTPException: 403 if the caller submitted the server
        HTTPException: 409 if a concurrent request created the rating first
    """
    server = get_server_or_404(db, rating_data.server_id)

    if server.owner_id is not None and server.owner_id == user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot rate your own server",
        )

    rating = db.execute(
        select(Rating).where(Rating.server_id == server.id, Rating.user_id == user_id)
    ).scalar_one_or_none()

    if rating is None:
        rating = Rating(server_id=server.id, user_id=user_id)
        db.add(rating)

    rating.trustworthiness = rating_data.trustworthiness
    rating.usefulness = rating_data.usefulness
    rating.text = rating_data.text

    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You have already rated this server",
        )

    _commit_with_aggregates(db, server.id)
    db.refresh(rating)

    invalidate_user_cache(user_id)
    invalidate_server_cache(server.id)
    logger.info(f"Rating {rating.id} saved for {server.id} by {user_id}")

    return RatingResponse.model_validate(rating)


@router.patch(
    "/{rating_id}",
    response_model=RatingResponse,
    summary="Update a rating",
    dependencies=[RatingsRateLimit],
)
def update_rating(
    rating_id: int,
    rating_data: RatingUpdate,
    db: DbSession,
    user_id: CurrentUserId,
) -> RatingResponse:
    """
    Update an existing rating. Only provided fields change.

    Raises:
        HTTPException: 404 if rating not found
        HTTPException: 403 if the caller is not the author
    """
    rating = get_rating_or_404(db, rating_id)
    _require_owner(rating, user_id, "update")

    update_data = rating_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(rating, field, value)

    _commit_with_aggregates(db, rating.server_id)
    db.refresh(rating)

    invalidate_user_cache(user_id)
    invalidate_server_cache(rating.server_id)

    return RatingResponse.model_validate(rating)


@router.delete(
    "/{rating_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a rating",
    dependencies=[RatingsRateLimit],
)
def delete_rating(
    rating_id: int,
    db: DbSession,
    user_id: CurrentUserId,
) -> Response:
    """
    Delete a rating. Its votes and flags go with it.

    Raises:
        HTTPException: 404 if rating not found
        HTTPException: 403 if the caller is not the author
    """
    rating = get_rating_or_404(db, rating_id)
    _require_owner(rating, user_id, "delete")

    server_id = rating.server_id
    db.delete(rating)
    _commit_with_aggregates(db, server_id)

    invalidate_user_cache(user_id)
    invalidate_server_cache(server_id)
    logger.info(f"Rating {rating_id} on {server_id} deleted by {user_id}")

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Review Feedback
# =============================================================================

@router.post(
    "/{rating_id}/vote",
    response_model=VoteResponse,
    summary="Vote on a review",
    dependencies=[Depends(enforce_rate_limit(RateLimitAction.VOTES))],
)
def vote_on_review(
    rating_id: int,
    vote_data: VoteRequest,
    db: DbSession,
    user_id: CurrentUserId,
) -> VoteResponse:
    """
    Record or change the caller's helpful / not helpful vote.

    The rating's tallies are recounted from the votes table, so repeated
    or changed votes never drift.

    Raises:
        HTTPException: 404 if rating not found
        HTTPException: 403 if voting on one's own review
    """
    rating = get_rating_or_404(db, rating_id)
    _forbid_own_review(rating, user_id, "vote on")

    vote = db.execute(
        select(ReviewVote).where(ReviewVote.rating_id == rating_id, ReviewVote.user_id == user_id)
    ).scalar_one_or_none()

    if vote is None:
        db.add(ReviewVote(rating_id=rating_id, user_id=user_id, helpful=vote_data.helpful))
    else:
        vote.helpful = vote_data.helpful
    db.flush()

    counts = dict(
        db.execute(
            select(ReviewVote.helpful, func.count(ReviewVote.id))
            .where(ReviewVote.rating_id == rating_id)
            .group_by(ReviewVote.helpful)
        ).all()
    )
    rating.helpful_count = counts.get(True, 0)
    rating.not_helpful_count = counts.get(False, 0)
    db.commit()

    invalidate_user_cache(rating.user_id)

    return VoteResponse(
        rating_id=rating_id,
        helpful_count=rating.helpful_count,
        not_helpful_count=rating.not_helpful_count,
    )


@router.post(
    "/{rating_id}/flag",
    response_model=FlagResponse,
    summary="Flag a review",
    dependencies=[Depends(enforce_rate_limit(RateLimitAction.FLAGS))],
)
def flag_review(
    rating_id: int,
    db: DbSession,
    user_id: CurrentUserId,
) -> FlagResponse:
    """
    Flag a review for moderation.

    Once a review collects flag_threshold distinct flags its status
    becomes "flagged".

    Raises:
        HTTPException: 404 if rating not found
        HTTPException: 403 if flagging one's own review
        HTTPException: 400 if the caller already flagged it
    """
    rating = get_rating_or_404(db, rating_id)
    _forbid_own_review(rating, user_id, "flag")

    existing = db.execute(
        select(ReviewFlag.id).where(ReviewFlag.rating_id == rating_id, ReviewFlag.user_id == user_id)
    ).scalar_one_or_none()
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already flagged this review",
        )

    db.add(ReviewFlag(rating_id=rating_id, user_id=user_id))
    db.flush()

    rating.flag_count = db.execute(
        select(func.count(ReviewFlag.id)).where(ReviewFlag.rating_id == rating_id)
    ).scalar() or 0
    if rating.flag_count >= settings.flag_threshold:
        rating.status = RatingStatus.FLAGGED.value
    db.commit()

    if rating.status == RatingStatus.FLAGGED.value:
        logger.warning(f"Review {rating_id} flagged ({rating.flag_count} flags)")
    invalidate_user_cache(rating.user_id)

    return FlagResponse(rating_id=rating_id, flag_count=rating.flag_count, status=rating.status)
