"""
Database helper functions for common patterns.
Reduces boilerplate in the repositories and maps psycopg failures onto the
service error taxonomy.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import errors as pg_errors

from app.errors import TransientStorageError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Non-transient database failure."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class UniqueConstraintError(DatabaseError):
    """A unique index rejected the write."""

    def __init__(self, message: str, constraint: str | None, operation: str = "unknown"):
        super().__init__(message, operation=operation)
        self.constraint = constraint


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """
    Translate psycopg exceptions raised inside the block.

    OperationalError / InterfaceError become TransientStorageError (retried by
    the queue), unique violations become UniqueConstraintError, anything else
    from psycopg becomes DatabaseError.
    """
    try:
        yield
    except pg_errors.UniqueViolation as e:
        constraint = e.diag.constraint_name if e.diag else None
        logger.info("Unique constraint rejected write", operation=operation, constraint=constraint)
        raise UniqueConstraintError(str(e), constraint, operation=operation) from e
    except (psycopg.OperationalError, psycopg.InterfaceError) as e:
        logger.warning("Transient database failure", operation=operation, error=str(e))
        raise TransientStorageError(f"Database unavailable: {e}", operation=operation) from e
    except psycopg.Error as e:
        logger.error("Database operation failed", operation=operation, error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(
    conn: psycopg.AsyncConnection, query: str, params: Sequence[Any] = ()
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        conn: Connection (pool connections use dict_row)
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        Dict with row data or None if no results
    """
    async with conn.cursor() as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
        return row if row else None


async def fetch_all(
    conn: psycopg.AsyncConnection, query: str, params: Sequence[Any] = ()
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts."""
    async with conn.cursor() as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def execute_query(
    conn: psycopg.AsyncConnection, query: str, params: Sequence[Any] = ()
) -> int:
    """Execute query and return number of affected rows."""
    cursor = await conn.execute(query, params)
    return cursor.rowcount
