"""
Sliding Window Store Tests

Redis store behaviour against a mocked client, and expiry of the
in-memory store.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from webhook_relay.core.exceptions import RateLimiterStoreError
from webhook_relay.services.rate_limiting import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    WindowSnapshot,
)


class TestRedisSlidingWindowStore:
    """Test cases for the sorted-set store."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.register_script.return_value = AsyncMock(return_value=[3, 1000])
        client.delete = AsyncMock(return_value=1)
        return client

    @pytest.mark.asyncio
    async def test_script_registered_once(self, redis_client):
        RedisSlidingWindowStore(redis_client)
        redis_client.register_script.assert_called_once_with(
            RedisSlidingWindowStore.SLIDING_WINDOW_SCRIPT
        )

    @pytest.mark.asyncio
    async def test_record_and_count(self, redis_client):
        """Script result maps to a snapshot; arguments are passed through."""
        store = RedisSlidingWindowStore(redis_client, key_prefix="rl")
        script = redis_client.register_script.return_value

        snapshot = await store.record_and_count("account:a", 2000, 1000, 2000)

        assert snapshot == WindowSnapshot(count=3, oldest_ms=1000)
        kwargs = script.await_args.kwargs
        assert kwargs["keys"] == ["rl:account:a"]
        now, window, member, ttl = kwargs["args"]
        assert (now, window, ttl) == (2000, 1000, 2000)
        assert member.startswith("2000-")

    @pytest.mark.asyncio
    async def test_members_are_unique(self, redis_client):
        """Requests in the same millisecond get distinct members."""
        store = RedisSlidingWindowStore(redis_client)
        script = redis_client.register_script.return_value

        await store.record_and_count("k", 5, 1000, 2000)
        await store.record_and_count("k", 5, 1000, 2000)

        members = [call.kwargs["args"][2] for call in script.await_args_list]
        assert members[0] != members[1]

    @pytest.mark.asyncio
    async def test_empty_window_has_no_oldest(self, redis_client):
        redis_client.register_script.return_value = AsyncMock(return_value=[0, -1])
        store = RedisSlidingWindowStore(redis_client)

        snapshot = await store.record_and_count("k", 5, 1000, 2000)
        assert snapshot.oldest_ms is None

    @pytest.mark.asyncio
    async def test_redis_error_is_translated(self, redis_client):
        error = RedisConnectionError("connection refused")
        redis_client.register_script.return_value = AsyncMock(side_effect=error)
        store = RedisSlidingWindowStore(redis_client)

        with pytest.raises(RateLimiterStoreError) as exc_info:
            await store.record_and_count("account:a", 5, 1000, 2000)

        assert exc_info.value.__cause__ is error
        assert exc_info.value.details["key"] == "account:a"
        assert exc_info.value.details["original_error_type"] == "ConnectionError"

    @pytest.mark.asyncio
    async def test_reset_deletes_key(self, redis_client):
        store = RedisSlidingWindowStore(redis_client, key_prefix="rl")
        await store.reset("account:a")
        redis_client.delete.assert_awaited_once_with("rl:account:a")


class TestInMemorySlidingWindowStore:
    """Test cases for the in-process store."""

    @pytest.mark.asyncio
    async def test_prunes_entries_outside_window(self):
        store = InMemorySlidingWindowStore()
        await store.record_and_count("k", 0, 1000, 2000)
        await store.record_and_count("k", 600, 1000, 2000)

        snapshot = await store.record_and_count("k", 1200, 1000, 2000)
        assert snapshot == WindowSnapshot(count=2, oldest_ms=600)

    @pytest.mark.asyncio
    async def test_expired_key_starts_empty(self):
        store = InMemorySlidingWindowStore()
        await store.record_and_count("k", 0, 1000, 100)

        snapshot = await store.record_and_count("k", 150, 1000, 100)
        assert snapshot.count == 1

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        store = InMemorySlidingWindowStore()
        await store.record_and_count("a", 0, 1000, 500)
        await store.record_and_count("b", 0, 1000, 5000)

        assert store.purge_expired(now_ms=1000) == 1
        snapshot = await store.record_and_count("b", 1000, 2000, 5000)
        assert snapshot.count == 2

    @pytest.mark.asyncio
    async def test_purge_does_not_orphan_waiting_caller(self):
        """A caller queued on a key's lock survives that key being purged."""
        store = InMemorySlidingWindowStore()
        await store.record_and_count("k", 0, 1000, 2000)
        window = store._windows["k"]

        await window.lock.acquire()
        pending = asyncio.create_task(store.record_and_count("k", 5000, 1000, 2000))
        await asyncio.sleep(0)
        window.lock.release()

        # Released but the waiter has not resumed yet
        assert store.purge_expired(now_ms=5000) == 1
        snapshot = await pending

        assert snapshot == WindowSnapshot(count=1, oldest_ms=5000)
        assert store._windows["k"] is not window
        assert store._windows["k"].timestamps == [5000]
