"""
Shared fixtures for integration tests.

Tests that need PostgreSQL request the `pool` fixture; they are skipped
when the database configured in settings is not reachable.
Requires PostgreSQL to be running (via docker-compose).
"""

from collections.abc import Iterator

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.postgres import PostgresAccountRepository, run_migrations
from src.config.settings import get_settings


@pytest.fixture(scope="session")
def pool() -> Iterator[ConnectionPool]:
    """Create connection pool for integration tests and apply migrations."""
    settings = get_settings()
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=1,
        max_size=10,
        open=True,
    )
    try:
        pool.wait(timeout=5.0)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_database(pool: ConnectionPool) -> Iterator[None]:
    """Empty the accounts table before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM accounts")
        conn.commit()
    yield


@pytest.fixture
def pg_repository(pool: ConnectionPool, clean_database: None) -> PostgresAccountRepository:
    """Create repository instance for each test."""
    return PostgresAccountRepository(pool)
