"""
Server Query Service

Filtered, sorted and paginated views over the server directory, plus the
per-category facet counts shown next to a listing.

Sort Options:
=============
- most-reviewed (default): total_ratings desc, combined_score desc, name
- top-rated: combined_score desc, total_ratings desc, name
- newest: created_at desc, name
- trending: recent_ratings_count desc, combined_score desc, name

When the default sort runs without a source filter, results are grouped
by source priority (user, then official, then registry) ahead of every
other key: a user-submitted server with no ratings still precedes a
registry server with a hundred.

Execution Paths:
================
1. Native: WHERE + ORDER BY + OFFSET/LIMIT, plus a COUNT with the same
   WHERE.
2. Native priority: as above, with the derived source_priority column
   leading the ORDER BY.
3. In-memory: fetch the whole filtered set, sort it with
   sort_by_source_priority and slice the requested page. Only used for
   the grouped default sort when the derived column is disabled; it
   loads every matching row, so keep it to small directories.

Every ordering ends with Server.id so pages never overlap on ties.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from server_directory.config import get_settings
from server_directory.models import Server, ServerSource, source_priority
from server_directory.schemas.server import CategoryCounts, ServerListResponse, ServerResponse
from server_directory.services.cache import SERVERS_TAG, cache_get, cache_set, make_cache_key
from server_directory.services.categories import CATEGORIES, normalize_category
from server_directory.utils.parsing import clamp, parse_bool, parse_date, parse_float, parse_int

logger = logging.getLogger(__name__)

SOURCE_ALL = "all"
SOURCE_FILTERS: tuple[str, ...] = (SOURCE_ALL, *(source.value for source in ServerSource))


class SortOption(str, Enum):
    """Listing sort modes."""

    MOST_REVIEWED = "most-reviewed"
    TOP_RATED = "top-rated"
    NEWEST = "newest"
    TRENDING = "trending"

    @classmethod
    def parse(cls, value: str | None) -> "SortOption":
        """Unknown or missing values fall back to the default sort."""
        try:
            return cls(value)
        except ValueError:
            return cls.MOST_REVIEWED


@dataclass(frozen=True)
class ServerQueryOptions:
    """
    Filters, sort and paging for a server listing.

    Every filter is optional; set filters are combined with AND.
    """

    search: str | None = None
    category: str | None = None
    source: str = SOURCE_ALL
    min_rating: float = 0.0
    max_rating: float | None = None
    date_from: date | None = None
    date_to: date | None = None
    has_github: bool | None = None
    sort: SortOption = SortOption.MOST_REVIEWED
    page: int = 1
    page_size: int = 20

    @classmethod
    def from_params(
        cls,
        search: str | None = None,
        category: str | None = None,
        source: str | None = None,
        min_rating: Any = None,
        max_rating: Any = None,
        date_from: Any = None,
        date_to: Any = None,
        has_github: Any = None,
        sort: str | None = None,
        page: Any = None,
        page_size: Any = None,
    ) -> "ServerQueryOptions":
        """
        Build options from raw query-string values.

        Never raises: malformed values fall back to "no filter", ratings
        are clamped to [0, 5] and paging is clamped to sane bounds.
        """
        settings = get_settings()

        search = (search or "").strip() or None

        category = (category or "").strip().lower() or None
        if category == SOURCE_ALL:
            category = None

        source = (source or "").strip().lower()
        if source not in SOURCE_FILTERS:
            source = SOURCE_ALL

        min_value = clamp(parse_float(min_rating, 0.0), 0.0, 5.0)
        max_value = parse_float(max_rating)
        if max_value is not None:
            max_value = clamp(max_value, 0.0, 5.0)

        has_github_value = parse_bool(has_github)

        page_value = max(1, parse_int(page, 1))
        size_value = int(
            clamp(parse_int(page_size, settings.default_page_size), 1, settings.max_page_size)
        )

        return cls(
            search=search,
            category=category,
            source=source,
            min_rating=min_value,
            max_rating=max_value,
            date_from=parse_date(date_from),
            date_to=parse_date(date_to),
            # Only "true" narrows the listing
            has_github=True if has_github_value else None,
            sort=SortOption.parse(sort),
            page=page_value,
            page_size=size_value,
        )

    @property
    def prioritize_source_order(self) -> bool:
        """Default sort with no source filter groups by source priority."""
        return self.sort == SortOption.MOST_REVIEWED and self.source == SOURCE_ALL

    def cache_params(self, include_paging: bool = True) -> dict[str, Any]:
        """Every option that affects the result, for cache keys."""
        params = {
            "q": self.search,
            "category": self.category,
            "source": self.source,
            "min": self.min_rating or None,
            "max": self.max_rating,
            "from": self.date_from.isoformat() if self.date_from else None,
            "to": self.date_to.isoformat() if self.date_to else None,
            "github": self.has_github,
        }
        if include_paging:
            params.update(sort=self.sort.value, page=self.page, size=self.page_size)
        return params


@dataclass
class PaginatedServers:
    items: list[Server] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20
    total_pages: int = 0


# =============================================================================
# Filtering
# =============================================================================

def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_where_clause(options: ServerQueryOptions) -> list:
    """
    Translate query options into SQLAlchemy conditions.

    - search: case-insensitive substring of name, organization or description
    - category: equality
    - source: equality unless "all"
    - min_rating / max_rating: inclusive range on avg_trustworthiness;
      a minimum of 0 is no filter
    - date_from / date_to: inclusive range on created_at, widened to the
      start and end of the given days (UTC)
    - has_github: repository_url is set

    Returns:
        List of conditions to pass to .where(*conditions)
    """
    conditions = []

    if options.search:
        pattern = f"%{_escape_like(options.search.lower())}%"
        conditions.append(
            or_(
                func.lower(Server.name).like(pattern, escape="\\"),
                func.lower(Server.organization).like(pattern, escape="\\"),
                func.lower(Server.description).like(pattern, escape="\\"),
            )
        )

    if options.category:
        conditions.append(Server.category == options.category)

    if options.source and options.source != SOURCE_ALL:
        conditions.append(Server.source == options.source)

    if options.min_rating > 0:
        conditions.append(Server.avg_trustworthiness >= options.min_rating)
    if options.max_rating is not None:
        conditions.append(Server.avg_trustworthiness <= options.max_rating)

    if options.date_from:
        conditions.append(
            Server.created_at >= datetime.combine(options.date_from, time.min, tzinfo=UTC)
        )
    if options.date_to:
        conditions.append(
            Server.created_at <= datetime.combine(options.date_to, time.max, tzinfo=UTC)
        )

    if options.has_github:
        conditions.append(Server.repository_url.is_not(None))
        conditions.append(Server.repository_url != "")

    return conditions


# =============================================================================
# Ordering
# =============================================================================

def get_order_by(
    sort: SortOption,
    prioritize_source_order: bool = False,
    use_priority_column: bool = True,
    name_collation: str | None = None,
) -> list | None:
    """
    ORDER BY clauses for a sort mode.

    name_collation pins the name tie-break to a byte-order collation
    ("C" on PostgreSQL), matching sort_by_source_priority.

    Returns:
        The clauses, or None when the ordering cannot be expressed
        natively (grouped default sort without the derived column)
    """
    if sort == SortOption.TOP_RATED:
        order = [Server.combined_score.desc(), Server.total_ratings.desc()]
    elif sort == SortOption.NEWEST:
        order = [Server.created_at.desc()]
    elif sort == SortOption.TRENDING:
        order = [Server.recent_ratings_count.desc(), Server.combined_score.desc()]
    else:
        order = [Server.total_ratings.desc(), Server.combined_score.desc()]

    if sort == SortOption.MOST_REVIEWED and prioritize_source_order:
        if not use_priority_column:
            return None
        order.insert(0, Server.source_priority.asc())

    name = Server.name.collate(name_collation) if name_collation else Server.name
    return [*order, name.asc(), Server.id.asc()]


def _source_priority_key(server: Server) -> tuple:
    return (
        source_priority(server.source),
        -server.total_ratings,
        -server.combined_score,
        server.name,
        server.id,
    )


def sort_by_source_priority(servers: Sequence[Server]) -> list[Server]:
    """
    Sort servers by source priority, then the most-reviewed ordering.

    Priority comes from the source value itself, not the stored column,
    so rows written before the column existed still sort correctly.
    """
    return sorted(servers, key=_source_priority_key)


# =============================================================================
# Queries
# =============================================================================

def _total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)


def _name_collation(db: Session) -> str | None:
    # SQLite BINARY already compares names by code point
    return "C" if db.get_bind().dialect.name == "postgresql" else None


def query_servers(
    db: Session,
    options: ServerQueryOptions,
    *,
    use_priority_column: bool | None = None,
) -> PaginatedServers:
    """
    Run a filtered, sorted, paginated listing query.

    Args:
        db: Database session
        options: Filters, sort and paging
        use_priority_column: Override settings.use_source_priority_column

    Returns:
        The requested page; a page past the end has no items
    """
    settings = get_settings()
    if use_priority_column is None:
        use_priority_column = settings.use_source_priority_column

    page = max(1, options.page)
    page_size = int(clamp(options.page_size, 1, settings.max_page_size))
    offset = (page - 1) * page_size

    conditions = build_where_clause(options)
    order_by = get_order_by(
        options.sort,
        options.prioritize_source_order,
        use_priority_column,
        name_collation=_name_collation(db),
    )

    if order_by is None:
        servers = db.execute(select(Server).where(*conditions)).scalars().all()
        ordered = sort_by_source_priority(servers)
        total = len(ordered)
        items = ordered[offset:offset + page_size]
        logger.debug(f"In-memory source-priority sort over {total} servers")
    else:
        count_stmt = select(func.count()).select_from(Server).where(*conditions)
        total = db.execute(count_stmt).scalar() or 0

        if offset >= total:
            # Past the end; also keeps huge page numbers out of OFFSET
            items = []
        else:
            stmt = (
                select(Server)
                .where(*conditions)
                .order_by(*order_by)
                .offset(offset)
                .limit(page_size)
            )
            items = list(db.execute(stmt).scalars().all())

    return PaginatedServers(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=_total_pages(total, page_size),
    )


def get_category_counts(db: Session, options: ServerQueryOptions) -> dict[str, int]:
    """
    Count matching servers per category.

    Applies every filter except category and paging. Categories with no
    matches are present with 0; NULL or unknown stored categories count
    as "other", so the per-category counts always sum to "total".

    Returns:
        {"total": n, "database": n, ..., "other": n}
    """
    conditions = build_where_clause(replace(options, category=None))

    stmt = (
        select(Server.category, func.count(Server.id))
        .where(*conditions)
        .group_by(Server.category)
    )

    counts = {category: 0 for category in CATEGORIES}
    for category, count in db.execute(stmt).all():
        counts[normalize_category(category)] += count

    return {"total": sum(counts.values()), **counts}


# =============================================================================
# Cached Views
# =============================================================================

def get_server_listing(db: Session, options: ServerQueryOptions) -> ServerListResponse:
    """
    Listing page, served from cache when possible.

    Cached pages are tagged "servers" and dropped whenever a rating or
    server changes; otherwise they live for cache_ttl_server_list.
    """
    cache_key = make_cache_key("servers", "list", **options.cache_params())
    cached = cache_get(cache_key)
    if cached is not None:
        return ServerListResponse.model_validate(cached)

    result = query_servers(db, options)
    response = ServerListResponse(
        items=[ServerResponse.model_validate(server) for server in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )

    cache_set(
        cache_key,
        response.model_dump(mode="json"),
        ttl=get_settings().cache_ttl_server_list,
        tags=[SERVERS_TAG],
    )
    return response


def get_cached_category_counts(db: Session, options: ServerQueryOptions) -> CategoryCounts:
    """Category counts, served from cache when possible."""
    cache_key = make_cache_key("servers", "categories", **options.cache_params(include_paging=False))
    cached = cache_get(cache_key)
    if cached is not None:
        return CategoryCounts.model_validate(cached)

    response = CategoryCounts(**get_category_counts(db, options))
    cache_set(
        cache_key,
        response.model_dump(mode="json"),
        ttl=get_settings().cache_ttl_category_counts,
        tags=[SERVERS_TAG],
    )
    return response
