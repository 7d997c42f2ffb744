"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from psycopg_pool import ConnectionPool

from src.adapters.ratelimit.memory import InMemoryResendCounterStore
from src.adapters.ratelimit.redis import RedisResendCounterStore
from src.adapters.repository.postgres import run_migrations
from src.api.concurrency import create_hashing_executor
from src.api.v1 import router as v1_router
from src.config.settings import Settings, get_settings
from src.domain.credentials import dummy_bcrypt_hash
from src.domain.exceptions import StoreUnavailable
from src.domain.ports import ResendCounterStore
from src.domain.throttle import ResendThrottle

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Account API v1 - Register, verify email, resend verification, sign in",
    },
]


def create_counter_store(settings: Settings) -> ResendCounterStore:
    """Pick the resend counter backend: Redis when configured, else in-process."""
    if settings.redis_url:
        return RedisResendCounterStore.from_url(settings.redis_url)
    logger.warning("Resend counters are process-local; limits apply per instance")
    return InMemoryResendCounterStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates database connection pool on startup
    - Runs migrations on startup
    - Creates the resend throttle and worker pools
    - Precomputes the dummy bcrypt hashes
    - Closes pools on shutdown
    """
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    logger.info("Starting application...")
    logger.info("Connecting to database...")

    # Create connection pool with explicit sizing
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
    )

    # Run migrations
    logger.info("Running database migrations...")
    run_migrations(pool)

    # Store shared state in app state for dependency injection
    app.state.pool = pool
    app.state.resend_throttle = ResendThrottle(
        store=create_counter_store(settings),
        hourly_limit=settings.resend_hourly_limit,
        daily_limit=settings.resend_daily_limit,
    )
    app.state.hashing_executor = create_hashing_executor(settings.hashing_workers)
    app.state.email_executor = ThreadPoolExecutor(
        max_workers=settings.email_workers, thread_name_prefix="email"
    )

    # Dummy hashes compared against on lookup misses
    dummy_bcrypt_hash(settings.bcrypt_cost)
    dummy_bcrypt_hash(settings.display_code_bcrypt_cost)

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    app.state.hashing_executor.shutdown(wait=True)
    app.state.email_executor.shutdown(wait=True)
    pool.close()
    logger.info("Database connection pool closed")


app = FastAPI(
    title="accounts",
    description="Account API - Credential hashing and email verification lifecycle",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Storage failures surface as a generic 500."""
    logger.error(f"Store unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with database validation.

    Returns 200 OK if application and database are healthy.
    Raises exception if database connection fails.
    """
    # Validate database connectivity
    pool = request.app.state.pool
    with pool.connection() as conn:
        conn.execute("SELECT 1")

    return {"status": "healthy"}
