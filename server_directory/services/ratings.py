"""
Ratings Service

Maintains the denormalized rating aggregates on the Server model:
- avg_trustworthiness / avg_usefulness: means over all ratings
- total_ratings: number of ratings
- combined_score: (avg_trustworthiness + avg_usefulness) / 2
- recent_ratings_count: ratings created in the trailing window

These fields are recomputed after every rating create, update or delete,
so listings can sort on plain columns instead of running aggregate
subqueries per request.

Consistency:
The server row is locked (SELECT ... FOR UPDATE) before the aggregate
read. Route handlers flush the rating write, recompute with commit=False
and commit once, so the rating and its aggregates land in the same
transaction and concurrent recomputes for one server serialize on the
row lock. SQLite ignores FOR UPDATE; there the last writer wins.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from server_directory.config import get_settings
from server_directory.models import Rating, Server

logger = logging.getLogger(__name__)


class AggregateRecomputeError(Exception):
    """
    Recomputing a server's aggregates failed.

    A failed read leaves the previous aggregates untouched; a failed
    write must fail the rating mutation that triggered it.
    """


@dataclass(frozen=True)
class RatingAggregates:
    avg_trustworthiness: float
    avg_usefulness: float
    total_ratings: int
    combined_score: float
    recent_ratings_count: int

    def as_dict(self) -> dict:
        return asdict(self)


def _read_aggregates(db: Session, server_id: str, cutoff: datetime) -> RatingAggregates:
    # Lock the owning row so concurrent recomputes don't interleave
    db.execute(
        select(Server.id).where(Server.id == server_id).with_for_update()
    )

    stmt = select(
        func.avg(Rating.trustworthiness),
        func.avg(Rating.usefulness),
        func.count(Rating.id),
        func.coalesce(
            func.sum(case((Rating.created_at >= cutoff, 1), else_=0)),
            0,
        ),
    ).where(Rating.server_id == server_id)

    avg_trust, avg_use, total, recent = db.execute(stmt).one()

    # AVG over zero rows is NULL; Postgres returns Decimal otherwise
    avg_trust = float(avg_trust) if avg_trust is not None else 0.0
    avg_use = float(avg_use) if avg_use is not None else 0.0

    return RatingAggregates(
        avg_trustworthiness=avg_trust,
        avg_usefulness=avg_use,
        total_ratings=int(total),
        combined_score=(avg_trust + avg_use) / 2,
        recent_ratings_count=int(recent),
    )


def recompute_server_aggregates(
    db: Session,
    server_id: str,
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> RatingAggregates:
    """
    Recalculate and store a server's rating aggregates.

    Called after any rating create/update/delete to keep the
    denormalized fields in sync. Idempotent: two calls with no rating
    change in between write identical values.

    Args:
        db: Database session
        server_id: ID of the server to update
        now: Wall-clock reference for the recent window (defaults to now)
        commit: Commit after the write; pass False to let the caller
            commit the rating write and the aggregates together

    Returns:
        The aggregates that were written

    Raises:
        AggregateRecomputeError: If the read or the write fails, or the
            server does not exist
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=get_settings().recent_ratings_window_days)

    try:
        aggregates = _read_aggregates(db, server_id, cutoff)
    except SQLAlchemyError as e:
        logger.error(f"Failed to read rating aggregates for server {server_id}: {e}")
        raise AggregateRecomputeError(f"Could not read aggregates for {server_id}") from e

    try:
        result = db.execute(
            update(Server)
            .where(Server.id == server_id)
            .values(**aggregates.as_dict())
        )
        if result.rowcount == 0:
            raise AggregateRecomputeError(f"Server {server_id} not found")
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to write rating aggregates for server {server_id}: {e}")
        raise AggregateRecomputeError(f"Could not write aggregates for {server_id}") from e

    logger.debug(
        f"Recomputed aggregates for {server_id}: "
        f"{aggregates.total_ratings} ratings, combined {aggregates.combined_score:.2f}"
    )
    return aggregates


def recompute_all_server_aggregates(db: Session) -> int:
    """
    Recalculate rating aggregations for all servers.

    Useful for data migrations or fixing inconsistencies left by the
    non-serialized recompute on databases without row locks.

    Returns:
        Number of servers updated
    """
    server_ids = db.execute(select(Server.id)).scalars().all()

    for server_id in server_ids:
        recompute_server_aggregates(db, server_id)

    return len(server_ids)
