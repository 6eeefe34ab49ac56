"""
Redis Connection Factory Tests
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from webhook_relay.core.exceptions import RedisUnavailableError
from webhook_relay.infrastructure.redis import RedisConnectionFactory

MODULE = "webhook_relay.infrastructure.redis.connection_factory"


class TestRedisConnectionFactory:
    """Test cases for RedisConnectionFactory."""

    @pytest.fixture
    def pool(self):
        pool = MagicMock()
        pool.disconnect = AsyncMock()
        return pool

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, settings, pool, redis_client):
        with patch(f"{MODULE}.ConnectionPool.from_url", return_value=pool) as from_url, \
                patch(f"{MODULE}.Redis", return_value=redis_client):
            factory = RedisConnectionFactory(settings)
            first = await factory.initialize()
            second = await factory.initialize()

        assert first is second is redis_client
        assert factory.is_initialized is True
        from_url.assert_called_once()
        assert from_url.call_args.kwargs["decode_responses"] is True
        assert from_url.call_args.kwargs["max_connections"] == settings.REDIS_MAX_CONNECTIONS

    @pytest.mark.asyncio
    async def test_unreachable_redis(self, settings, pool, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("refused")

        with patch(f"{MODULE}.ConnectionPool.from_url", return_value=pool), \
                patch(f"{MODULE}.Redis", return_value=redis_client):
            factory = RedisConnectionFactory(settings)
            with pytest.raises(RedisUnavailableError) as exc_info:
                await factory.initialize()

        assert isinstance(exc_info.value.__cause__, RedisConnectionError)
        assert factory.is_initialized is False
        pool.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_requires_initialize(self, settings):
        with pytest.raises(RedisUnavailableError):
            RedisConnectionFactory(settings).client

    @pytest.mark.asyncio
    async def test_health_check(self, settings, pool, redis_client):
        factory = RedisConnectionFactory(settings)
        assert (await factory.health_check())["status"] == "unavailable"

        with patch(f"{MODULE}.ConnectionPool.from_url", return_value=pool), \
                patch(f"{MODULE}.Redis", return_value=redis_client):
            await factory.initialize()

        assert await factory.health_check() == {"status": "healthy"}

        redis_client.ping.side_effect = RedisConnectionError("gone")
        health = await factory.health_check()
        assert health["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_close(self, settings, pool, redis_client):
        with patch(f"{MODULE}.ConnectionPool.from_url", return_value=pool), \
                patch(f"{MODULE}.Redis", return_value=redis_client):
            factory = RedisConnectionFactory(settings)
            await factory.initialize()

        await factory.close()

        redis_client.aclose.assert_awaited_once()
        pool.disconnect.assert_awaited_once()
        assert factory.is_initialized is False
