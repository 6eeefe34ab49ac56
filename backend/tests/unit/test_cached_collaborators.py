"""
Cached Collaborator Tests

Read-through Redis caches in front of account and destination lookups.
"""

import hashlib
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from webhook_relay.infrastructure.repositories import (
    RedisCachedAccountResolver,
    RedisCachedDestinationDirectory,
)


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.get.return_value = None
    return client


class TestRedisCachedAccountResolver:
    """Test cases for the account cache."""

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, redis_client, accounts, account):
        resolver = RedisCachedAccountResolver(accounts, redis_client, ttl_seconds=30)

        resolved = await resolver.resolve_account_by_token(account.app_secret_token)

        assert resolved == account
        key, ttl, payload = redis_client.setex.await_args.args
        digest = hashlib.sha256(account.app_secret_token.encode()).hexdigest()
        assert key == f"cache:account:{digest}"
        assert account.app_secret_token not in key
        assert ttl == 30
        assert json.loads(payload)["account_id"] == account.account_id

    @pytest.mark.asyncio
    async def test_hit_skips_inner(self, redis_client, account):
        inner = AsyncMock()
        redis_client.get.return_value = account.model_dump_json()
        resolver = RedisCachedAccountResolver(inner, redis_client)

        assert await resolver.resolve_account_by_token("anything") == account
        inner.resolve_account_by_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_token_is_not_cached(self, redis_client, accounts):
        resolver = RedisCachedAccountResolver(accounts, redis_client)

        assert await resolver.resolve_account_by_token("nope") is None
        redis_client.setex.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back(self, redis_client, accounts, account):
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.setex.side_effect = RedisConnectionError("down")
        resolver = RedisCachedAccountResolver(accounts, redis_client)

        assert await resolver.resolve_account_by_token(account.app_secret_token) == account

    @pytest.mark.asyncio
    async def test_invalidate(self, redis_client, accounts):
        resolver = RedisCachedAccountResolver(accounts, redis_client)
        await resolver.invalidate("token")
        redis_client.delete.assert_awaited_once_with(resolver._key("token"))


class TestRedisCachedDestinationDirectory:
    """Test cases for the destination cache."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, redis_client, destinations, account):
        directory = RedisCachedDestinationDirectory(destinations, redis_client)

        first = await directory.list_destinations(account.account_id)
        key, _, payload = redis_client.setex.await_args.args
        assert key == f"cache:destinations:{account.account_id}"

        redis_client.get.return_value = payload
        destinations.clear(account.account_id)
        second = await directory.list_destinations(account.account_id)

        assert second == first
        assert [d.id for d in second] == [1, 2]
        assert second[0].headers == {"Authorization": "Bearer d1"}

    @pytest.mark.asyncio
    async def test_empty_list_is_cached(self, redis_client, destinations):
        directory = RedisCachedDestinationDirectory(destinations, redis_client)
        redis_client.get.return_value = "[]"

        assert await directory.list_destinations("acct-x") == []

    @pytest.mark.asyncio
    async def test_redis_outage_falls_back(self, redis_client, destinations, account):
        redis_client.get.side_effect = RedisConnectionError("down")
        directory = RedisCachedDestinationDirectory(destinations, redis_client)

        result = await directory.list_destinations(account.account_id)
        assert len(result) == 2
