"""
FastAPI Application Entry Point

Creates and configures the FastAPI application:

1. Lifespan: connect Redis on startup (optional; the app runs without
   it), close it on shutdown.
2. Middleware: slowapi per-IP limits, CORS.
3. Exception handlers: every error leaves as
   {"error": {"code": ..., "message": ...}}.
   - RATE_LIMITED (429, with Retry-After / X-RateLimit-* headers)
   - INTERNAL_ERROR (500, no retry guidance; the real error is logged)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from server_directory.config import get_settings
from server_directory.routers import ratings_router, servers_router, users_router
from server_directory.services.cache import get_cache_stats
from server_directory.services.rate_limiter import (
    RateLimitExceededError,
    get_rate_limiter,
    limiter,
    rate_limit_exceeded_handler,
    rate_limited_response,
)
from server_directory.services.ratings import AggregateRecomputeError
from server_directory.services.redis_client import close_redis_connection, get_redis_client

# =============================================================================
# Logging Configuration
# =============================================================================
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def internal_error_response(message: str = "An internal error occurred.") -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": message}},
    )


# =============================================================================
# Lifespan Events
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: report Redis availability. Shutdown: close Redis."""
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"API version: {settings.api_version}")

    redis_client = get_redis_client()
    if redis_client:
        logger.info("Redis caching enabled")
    else:
        logger.warning("Redis unavailable - caching disabled, rate limits are per process")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    close_redis_connection()


# =============================================================================
# Application Factory
# =============================================================================
def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        description="""
## Server Directory API

Browse and rate servers.

### Features
- **Servers**: Filtered, sorted, paginated listings with category counts
- **Ratings**: Trustworthiness and usefulness scores with optional reviews
- **Moderation**: Helpfulness votes and review flags

### Identity
Mutations require an `X-User-Id` header.

### Rate Limiting
Mutations are limited per user; reads per IP.
        """,
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_error_handler(
        request: Request,
        exc: RateLimitExceededError,
    ) -> JSONResponse:
        """Per-user limit tripped: 429 with the remaining wait."""
        logger.info(f"Rate limited {request.method} {request.url.path}: {exc}")
        return rate_limited_response(
            f"Too many {exc.action} requests. Try again in {exc.result.reset_in_seconds} seconds.",
            exc.result.remaining,
            exc.result.reset_in_seconds,
        )

    @app.exception_handler(AggregateRecomputeError)
    async def aggregate_error_handler(
        request: Request,
        exc: AggregateRecomputeError,
    ) -> JSONResponse:
        """The rating write was rolled back along with the failed recompute."""
        logger.error(f"Aggregate recompute failed: {exc}")
        return internal_error_response("Failed to save rating. Please try again.")

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(
        request: Request,
        exc: SQLAlchemyError,
    ) -> JSONResponse:
        """Hide database details from callers; log them."""
        logger.error(f"Database error: {exc}")
        return internal_error_response("A database error occurred.")

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        logger.error(f"Unhandled error: {exc}", exc_info=True)

        if settings.debug:
            return internal_error_response(str(exc))

        return internal_error_response()

    # -------------------------------------------------------------------------
    # Register Routers
    # -------------------------------------------------------------------------
    api_prefix = f"/api/{settings.api_version}"

    app.include_router(servers_router, prefix=api_prefix)
    app.include_router(ratings_router, prefix=api_prefix)
    app.include_router(users_router, prefix=api_prefix)

    # -------------------------------------------------------------------------
    # Health Check Endpoint
    # -------------------------------------------------------------------------
    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="Check if the API is running and healthy.",
    )
    def health_check() -> dict:
        """Status plus cache connectivity and rate limiter mode."""
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.api_version,
            "cache": get_cache_stats(),
            "rate_limiting": {
                "enabled": settings.rate_limit_enabled,
                "mode": get_rate_limiter().mode,
                "read_limit": settings.rate_limit_read,
                "list_limit": settings.rate_limit_list,
            },
        }

    return app


# =============================================================================
# Application Instance
# =============================================================================
# uvicorn server_directory.main:app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "server_directory.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
