#!/usr/bin/env python3
"""
Recompute Rating Aggregates

Rebuilds the denormalized rating fields (averages, totals, combined
score, recent count) from the ratings table, then drops cached listings.

USAGE:
    python scripts/recompute_aggregates.py                  # every server
    python scripts/recompute_aggregates.py --server-id acme/postgres-mcp
    python scripts/recompute_aggregates.py --force          # skip the sync limit

A full recompute is a resync and obeys the global "sync" rate limit
(1/minute by default), shared across hosts through Redis.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from server_directory.database import SessionLocal
from server_directory.services.cache import (
    cache_invalidate_prefix,
    invalidate_server_cache,
    invalidate_server_listing_cache,
)
from server_directory.services.rate_limiter import (
    RateLimitAction,
    get_rate_limit_key,
    get_rate_limit_policies,
    get_rate_limiter,
)
from server_directory.services.ratings import (
    AggregateRecomputeError,
    recompute_all_server_aggregates,
    recompute_server_aggregates,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def recompute(server_id: str | None = None, force: bool = False) -> int:
    """
    Recompute one server, or all of them.

    Returns:
        Process exit code
    """
    if server_id is None and not force:
        policy = get_rate_limit_policies()[RateLimitAction.SYNC]
        result = get_rate_limiter().check_policy(
            get_rate_limit_key("global", RateLimitAction.SYNC.value), policy
        )
        if not result.allowed:
            logger.error(
                f"Sync rate limit reached; retry in {result.reset_in_seconds}s or use --force"
            )
            return 2

    db = SessionLocal()
    try:
        if server_id is not None:
            aggregates = recompute_server_aggregates(db, server_id)
            invalidate_server_cache(server_id)
            logger.info(
                f"{server_id}: {aggregates.total_ratings} ratings, "
                f"combined score {aggregates.combined_score:.2f}"
            )
        else:
            count = recompute_all_server_aggregates(db)
            cache_invalidate_prefix("server:")
            invalidate_server_listing_cache()
            logger.info(f"Recomputed aggregates for {count} servers")
    except AggregateRecomputeError as e:
        logger.error(f"Recompute failed: {e}")
        return 1
    finally:
        db.close()

    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Recompute server rating aggregates"
    )
    parser.add_argument(
        "--server-id",
        default=None,
        help="Recompute only this server ('organization/name')"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the global sync rate limit"
    )

    args = parser.parse_args()
    sys.exit(recompute(server_id=args.server_id, force=args.force))


if __name__ == "__main__":
    main()
