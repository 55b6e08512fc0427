# app/db/helpers.py
"""
Query helpers shared by the repositories.

Every helper takes an optional ``connection`` so repositories can run
several statements inside ``db_pool.transaction()``; without one a pooled
connection is borrowed for the single statement. psycopg errors surface
as DatabaseError.
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Raised when the storage collaborator fails."""

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
        logger.error("Database error", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return the first row as a dict (None when empty).
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
    """First column of the first row."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute a statement and return the affected row count.

    Conditional updates (``... WHERE status = 'scheduled'``) rely on the
    rowcount to tell whether this caller won the transition.
    """
    async with _cursor("execute", query, connection) as cur:
        await cur.execute(query, params)
        return cur.rowcount


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a read on connection-level failures with exponential backoff.

    Only for statements that are safe to repeat. Sweeps use it for the
    queries that pick their batch.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not isinstance(e.__cause__, psycopg.OperationalError) or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database read failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
