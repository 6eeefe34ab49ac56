"""
Redis Connection Factory

Connection management for Redis: a single shared pool created at startup,
health probes, and orderly shutdown. Components receive the client from the
factory instead of importing a global.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from ...core.config import Settings
from ...core.exceptions import RedisUnavailableError

logger = logging.getLogger(__name__)


class RedisConnectionFactory:
    """
    Factory for creating and managing the shared Redis connection pool.

    ``initialize`` is idempotent and safe to call concurrently.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self, verify: bool = True) -> Redis:
        """Create the connection pool and optionally verify connectivity."""
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            self._pool = ConnectionPool.from_url(
                self._settings.REDIS_URL,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
                socket_timeout=self._settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=self._settings.REDIS_SOCKET_TIMEOUT,
                decode_responses=True,
                health_check_interval=30,
            )
            client = Redis(connection_pool=self._pool)

            if verify:
                try:
                    await client.ping()
                except RedisError as e:
                    await self._pool.disconnect()
                    self._pool = None
                    raise RedisUnavailableError(
                        message="Failed to connect to Redis",
                        original_error=e,
                    ) from e

            self._client = client
            logger.info(
                "Redis connection factory initialized",
                extra={"max_connections": self._settings.REDIS_MAX_CONNECTIONS},
            )
            return client

    @property
    def client(self) -> Redis:
        """Return the shared client. ``initialize`` must have run first."""
        if self._client is None:
            raise RedisUnavailableError(
                message="Redis connection factory is not initialized"
            )
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report status."""
        if self._client is None:
            return {"status": "unavailable", "message": "not initialized"}

        try:
            await self._client.ping()
            return {"status": "healthy"}
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return {"status": "unhealthy", "message": str(e)}

    async def close(self) -> None:
        """Close the client and disconnect the pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Redis connection factory closed")
