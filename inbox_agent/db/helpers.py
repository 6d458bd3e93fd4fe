"""
Query helpers used by the workflow repository.

Every helper accepts an optional `connection` so several statements can share
one transaction (see `db_pool.transaction()`); without it a pooled autocommit
connection is borrowed for the single statement. psycopg errors are wrapped in
DatabaseError with the helper name as `operation`.
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from inbox_agent.db.pool import db_pool
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Wraps a psycopg error raised by a helper or a retried repository call."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(
    operation: str, query: str, connection: psycopg.AsyncConnection | None
) -> AsyncIterator[psycopg.AsyncCursor]:
    try:
        if connection is not None:
            async with connection.cursor() as cur:
                yield cur
        else:
            async with db_pool.connection() as conn:
                async with conn.cursor() as cur:
                    yield cur
    except psycopg.Error as e:
        logger.error("Query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Run a query and return its first row.

    Args:
        query: SQL with %s placeholders
        params: Query parameters
        connection: Connection to reuse, e.g. inside a transaction

    Returns:
        Row as a dict, or None when the query matched nothing
    """
    async with _cursor("fetch_one", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    async with _cursor("fetch_all", query, connection) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None."""
    async with _cursor("fetch_val", query, connection) as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a statement and return the affected row count."""
    async with _cursor("execute", query, connection) as cur:
        await cur.execute(query, params)
        return cur.rowcount


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, DatabaseError):
        error = error.__cause__
    return isinstance(error, psycopg.OperationalError)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository coroutine on dropped connections and similar
    OperationalErrors, with exponential backoff. Integrity and data errors
    fail immediately as non-recoverable DatabaseErrors.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except (psycopg.IntegrityError, psycopg.DataError) as e:
                    logger.error("Permanent database error", operation=func.__name__, error=str(e))
                    raise DatabaseError(
                        f"Permanent database error: {e}",
                        operation=func.__name__,
                        recoverable=False,
                    ) from e
                except (DatabaseError, psycopg.OperationalError) as e:
                    if not _is_transient(e):
                        raise
                    if attempt >= max_retries:
                        if isinstance(e, DatabaseError):
                            raise
                        raise DatabaseError(
                            f"{func.__name__} failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                delay = base_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    "Database operation failed, retrying",
                    operation=func.__name__,
                    attempt=attempt,
                    max_retries=max_retries,
                    delay=delay,
                )
                await asyncio.sleep(delay)

        return wrapper

    return decorator
