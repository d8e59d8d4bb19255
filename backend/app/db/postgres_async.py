"""
Async PostgreSQL connection handling.

Provides the asyncpg pool used by the FastAPI read path, the FastAPI
dependency that hands out pooled connections, and a single-connection helper
for the long-running batch job and the CLI.
"""

from collections.abc import AsyncIterator

import asyncpg

from ..config import settings


def _normalize_dsn(dsn: str) -> str:
    """
    Normalize PostgreSQL DSN to standard format.

    Strips SQLAlchemy-style driver specifications (e.g., postgresql+asyncpg://)
    and rewrites postgres:// to postgresql://.

    Args:
        dsn: Input DSN in various formats

    Returns:
        Normalized DSN starting with postgresql://
    """
    if dsn.startswith(("postgresql+", "postgres+")):
        dsn = "postgresql://" + dsn.split("://", 1)[1]

    if dsn.startswith("postgres://"):
        dsn = "postgresql://" + dsn.split("://", 1)[1]

    return dsn


# Global connection pool for the API (initialized at startup)
_pool: asyncpg.Pool | None = None


async def _init_conn(conn: asyncpg.Connection) -> None:
    """
    Initialize a pooled API connection.

    Read requests get a short statement timeout; a search that exceeds it
    fails its vector stage and the retrieval engine falls back to text search.

    Args:
        conn: New asyncpg connection to initialize
    """
    await conn.execute(
        """
        SET application_name = 'scripture-index-api';
        SET statement_timeout = '5s';
        SET idle_in_transaction_session_timeout = '5s';
        SET hnsw.ef_search = 100;
        """
    )


async def init_pool(min_size: int = 1, max_size: int = 16) -> asyncpg.Pool:
    """
    Initialize the global asyncpg connection pool.

    Subsequent calls return the existing pool without recreation.

    Args:
        min_size: Minimum number of connections to maintain in pool
        max_size: Maximum number of connections allowed in pool

    Returns:
        Initialized asyncpg connection pool

    Raises:
        asyncpg.PostgresError: If database connection fails
    """
    global _pool

    if _pool is None:
        _pool = await asyncpg.create_pool(
            dsn=_normalize_dsn(settings.DATABASE_URL),
            min_size=min_size,
            max_size=max_size,
            max_inactive_connection_lifetime=60,
            init=_init_conn,
            statement_cache_size=1024,
        )

    return _pool


async def close_pool() -> None:
    """Close the global pool if it was opened."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def connect(
    dsn: str | None = None, application_name: str = "scripture-indexer"
) -> asyncpg.Connection:
    """
    Open a standalone connection for batch jobs and CLI commands.

    No statement timeout is set, so index builds and long upsert runs run to
    completion.
    """
    conn = await asyncpg.connect(
        dsn=_normalize_dsn(dsn or settings.DATABASE_URL),
        server_settings={"application_name": application_name},
    )
    return conn


async def get_pg() -> AsyncIterator[asyncpg.Connection]:
    """
    FastAPI dependency for injecting PostgreSQL connections.

    Acquires a connection from the pool, yields it to the route handler,
    then returns it to the pool when the request completes.

    Yields:
        asyncpg.Connection: Database connection for the current request
    """
    pool = await init_pool()

    async with pool.acquire() as conn:
        yield conn
