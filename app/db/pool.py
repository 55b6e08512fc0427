# app/db/pool.py
"""
Async PostgreSQL pool (psycopg_pool) shared by the API and the job worker.

The API opens it in the FastAPI lifespan; the worker opens it around each
job run. Connections come out configured with dict rows, autocommit, UTC
and a statement timeout; multi-statement work goes through
``db_pool.transaction()``.
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

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "30s"


async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
    conn.row_factory = dict_row
    await conn.set_autocommit(True)
    await conn.execute(
        sql.SQL("SET application_name = {}").format(
            sql.Literal(f"carry-my-words-{settings.environment}")
        )
    )
    await conn.execute("SET timezone = 'UTC'")
    await conn.execute(
        sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
    )


class DatabasePoolManager:
    """Owns the process-wide AsyncConnectionPool."""

    def __init__(self, conninfo: str | None = None):
        self._conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None

    @property
    def initialized(self) -> bool:
        return self.pool is not None

    async def initialize(self) -> None:
        if self.pool is not None:
            logger.warning("Database pool already initialized")
            return

        config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self._conninfo or settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=_configure_connection,
            **config,
        )

        try:
            await pool.open(wait=True)
            await self._ping(pool)
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        logger.info(
            "Database pool initialized",
            min_size=config["min_size"],
            max_size=config["max_size"],
            timeout=config["timeout"],
        )

    async def close(self) -> None:
        """Close the pool; a later initialize() opens a fresh one."""
        pool, self.pool = self.pool, None
        if pool is None:
            return

        try:
            await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out")

    @staticmethod
    async def _ping(pool: AsyncConnectionPool) -> None:
        async with pool.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database ping returned an unexpected result")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """
        Borrow a pooled connection.

            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if self.pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a connection inside a transaction (commit on success, rollback on error)."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if self.pool is None:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}

        started = time.perf_counter()
        try:
            await self._ping(self.pool)
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
