"""
Redis connection pool with an explicit lifecycle.

The job queue and health checks share one client per process.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """Owns a Redis connection pool; open on startup, close on shutdown."""

    def __init__(self, url: str, max_connections: int = 20):
        self._url = url
        self._max_connections = max_connections
        self.pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Create the pool and verify connectivity."""
        if self._client is not None:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            client = redis.Redis(connection_pool=self.pool)

            result = await client.ping()
            logger.info("Redis ping successful", result=result)

            self._client = client
            logger.info("Redis client initialized", max_connections=self._max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            if self.pool is not None:
                await self.pool.disconnect()
                self.pool = None
            raise RuntimeError("Redis initialization failed") from e

    async def close(self) -> None:
        """Clean shutdown"""
        try:
            if self._client is not None:
                await self._client.aclose()
            if self.pool is not None:
                await self.pool.disconnect()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._client = None
            self.pool = None

