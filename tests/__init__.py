"""
Test Suite for the Server Directory API

Test Organization:
- conftest.py: Shared fixtures (test database, fake Redis, client, sample data)
- test_ratings.py: Aggregate recompute and the /ratings endpoints
- test_server_queries.py: Ranking, filters, pagination, category counts
- test_cache.py: Redis cache layer
- test_redis_client.py: Shared connection and reconnect backoff
- test_rate_limiter.py: Stores, fallback and 429 responses
- test_categories.py: Keyword classifier

Running Tests:
    # Run all tests
    pytest

    # Run specific file
    pytest tests/test_server_queries.py

    # Run with verbose output
    pytest -v
"""
