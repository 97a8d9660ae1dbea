"""
Server Directory Application Package

A directory of servers that collect user ratings. Browsers filter, sort
and page through listings; ratings keep per-server aggregates current.

Package Structure:
- config.py: Application configuration using Pydantic Settings
- database.py: SQLAlchemy database connection and session management
- main.py: FastAPI application factory and configuration
- dependencies.py: Dependency injection functions
- models/: SQLAlchemy ORM models
- schemas/: Pydantic request/response schemas
- routers/: API route handlers
- services/: Business logic (aggregates, caching, rate limiting, listings)
- utils/: Helper functions
"""

__version__ = "0.1.0"
