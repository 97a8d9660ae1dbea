"""
Services Package

Business logic kept apart from HTTP handling (routers):
- cache.py: best-effort Redis caching with prefix and tag invalidation
- categories.py: keyword category classifier
- rate_limiter.py: per-user action limits (Redis with local fallback)
  and slowapi per-IP limits
- ratings.py: rating aggregate recomputation
- redis_client.py: shared Redis connection
- server_queries.py: filtered/sorted/paginated listings and category counts
"""
