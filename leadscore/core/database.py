"""
Async PostgreSQL connection pool for the persistence collaborator.

The lead-scoring core only needs persistence for lifecycle state: model
version metadata, recent (prediction, outcome) pairs for drift detection and
retraining, and A/B test state that must survive restarts. All of those flow
through the asyncpg-backed repositories in leadscore.services.repositories,
which in turn use the helpers in this module.

Key Components:
- Global connection pool (_pool), created lazily from DATABASE_URL
- init_db(): Initialize the pool at application startup
- get_db_pool(): Get the pool instance (initializes if needed)
- close_db(): Gracefully close the pool at application shutdown
- execute_query / execute_query_one / execute_command: convenience helpers

Connection Pool Configuration:
- min_size: 2 (minimum idle connections kept in pool)
- max_size: 10 (maximum connections in pool)
- command_timeout: 60 seconds (query timeout)

When DATABASE_URL is not configured, init_db() is never called: the service
container falls back to in-memory repositories.
"""

from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from leadscore.core.config import get_settings


# Global connection pool instance - None until init_db() is called
_pool: Optional[Pool] = None


async def init_db(dsn: Optional[str] = None) -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: if the pool already exists it is returned unchanged.

    Args:
        dsn: Optional connection string. Defaults to Settings.database_url.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        RuntimeError: If no DSN is supplied and DATABASE_URL is not set.
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        dsn = dsn or get_settings().database_url
        if not dsn:
            raise RuntimeError("DATABASE_URL is not configured")

        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=2,
            max_size=10,
            command_timeout=60,
        )

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing if needed.

    Returns:
        Pool: The asyncpg connection pool instance.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Safe to call when the pool was never created.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """
    Execute a query and return all rows.

    Args:
        query: SQL with $1, $2, ... placeholders.
        *args: Positional query parameters.

    Returns:
        List of asyncpg.Record rows (dict-like).
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_query_one(query: str, *args: Any) -> Optional[asyncpg.Record]:
    """Execute a query and return the first row or None."""
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def execute_command(query: str, *args: Any) -> str:
    """
    Execute an INSERT/UPDATE/DELETE and return the status string
    (e.g. 'UPDATE 1').
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.execute(query, *args)
