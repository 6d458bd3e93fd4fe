"""
Postgres connection pool shared by the API process and the scheduler worker.

Both processes call `db_pool.initialize(role=...)` once; the role ends up in
`application_name` so sessions from the sweep and from admin requests can be
told apart in pg_stat_activity.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from inbox_agent.config import settings
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Utilization above this marks the pool unhealthy
SATURATION_PERCENT = 90
CLOSE_TIMEOUT_SECONDS = 30.0


class PoolNotReadyError(RuntimeError):
    """Raised when a connection is requested before initialize() or after close()."""


class DatabasePoolManager:
    """Lifecycle wrapper around psycopg_pool.AsyncConnectionPool."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self.role = "api"
        self._closed = False

    @property
    def ready(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self, role: str = "api") -> None:
        if self.ready:
            logger.warning("Database pool already initialized", role=self.role)
            return

        self.role = role
        self._closed = False
        options = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_session,
            **options,
        )

        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Database pool failed to open", role=role, error=str(e))
            await pool.close()
            raise PoolNotReadyError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        logger.info(
            "Database pool ready",
            role=role,
            min_size=options["min_size"],
            max_size=options["max_size"],
        )

    async def _configure_session(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"inbox-agent-{self.role}-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(
                sql.Literal(f"{settings.DB_STATEMENT_TIMEOUT_SECONDS}s")
            )
        )

    async def close(self) -> None:
        if not self.ready:
            return

        pool, self.pool = self.pool, None
        self._closed = True
        try:
            await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed", role=self.role)
        except TimeoutError:
            logger.warning("Database pool close timed out", role=self.role)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow an autocommit connection from the pool."""
        if not self.ready:
            raise PoolNotReadyError("Database pool is not initialized")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a connection wrapped in a transaction; rolls back on exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.ready:
            return {"healthy": False, "error": "Pool not initialized"}

        started = time.perf_counter()
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "error": str(e), "error_type": type(e).__name__}

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        utilization = (size - available) / size * 100 if size else 0

        return {
            "healthy": utilization < SATURATION_PERCENT,
            "role": self.role,
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": size,
                "pool_available": available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
