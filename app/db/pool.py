"""
PostgreSQL connection pool for the session store.

Each process bootstrap builds one DatabasePoolManager, opens it on startup
and hands it to the repositories; nothing imports a pool at module level.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import Settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Above this share of checked-out connections the pool reports unhealthy
SATURATION_PERCENT = 90


class DatabasePoolManager:
    """
    Owns an AsyncConnectionPool with an explicit open/close lifecycle.

    Connections run in autocommit; repositories that write more than one
    statement use `transaction()` so the work commits or rolls back together.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: AsyncConnectionPool | None = None
        self._state = "new"

    async def initialize(self) -> None:
        if self._state == "open":
            logger.warning("Database pool already initialized")
            return
        if self._state == "closed":
            raise RuntimeError("Cannot reinitialize closed pool")

        config = self.settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self.settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )

        try:
            await pool.open(wait=True)
        except Exception as e:
            logger.error("Failed to open database pool", error=str(e))
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        self._state = "open"
        logger.info(
            "Database pool opened",
            min_size=config["min_size"],
            max_size=config["max_size"],
            timeout=config["timeout"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)

        app_name = f"{self.settings.SERVICE_NAME}-{self.settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '60s'")

    async def close(self) -> None:
        if self._state != "open":
            return

        self._state = "closed"
        try:
            await asyncio.wait_for(self.pool.close(), timeout=30.0)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow an autocommit connection."""
        if self._state != "open":
            raise RuntimeError(f"Database pool is not open (state: {self._state})")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection inside a transaction.

        Commits when the block exits normally; rolls back on any exception,
        task cancellation included.
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if self._state != "open":
            return {"healthy": False, "service": "database_pool", "error": f"Pool is {self._state}"}

        started = time.perf_counter()
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        in_use_percent = (size - available) / size * 100 if size else 0.0

        return {
            "healthy": in_use_percent < SATURATION_PERCENT,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": size,
                "pool_available": available,
                "in_use_percent": round(in_use_percent, 2),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }
