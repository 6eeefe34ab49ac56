"""
Sliding Window Limiter Tests

Unit tests for the limiter decision logic over the in-memory store.
"""

from unittest.mock import AsyncMock

import pytest

from webhook_relay.core.exceptions import RateLimiterStoreError
from webhook_relay.services.rate_limiting import (
    InMemorySlidingWindowStore,
    SlidingWindowLimiter,
)


class TestSlidingWindowLimiter:
    """Test cases for SlidingWindowLimiter."""

    @pytest.fixture
    def limiter(self, clock):
        return SlidingWindowLimiter(InMemorySlidingWindowStore(), clock=clock)

    @pytest.mark.asyncio
    async def test_limit_is_inclusive(self, limiter, clock):
        """The call that reaches exactly the limit is still allowed."""
        for i in range(5):
            decision = await limiter.allow("account:a", 5, 1000)
            assert decision.allowed is True
            assert decision.count == i + 1
            assert decision.remaining == 4 - i
            clock.advance(100)

        decision = await limiter.allow("account:a", 5, 1000)
        assert decision.allowed is False
        assert decision.count == 6
        assert decision.remaining == 0

    @pytest.mark.asyncio
    async def test_remaining_never_increases_within_window(self, limiter, clock):
        """Remaining is non-increasing while no entry leaves the window."""
        previous = None
        for _ in range(8):
            decision = await limiter.allow("account:a", 5, 1000)
            if previous is not None:
                assert decision.remaining <= previous
            previous = decision.remaining
            clock.advance(50)

    @pytest.mark.asyncio
    async def test_window_slides(self, limiter, clock):
        """After a full window of silence the first call sees limit - 1."""
        for _ in range(6):
            await limiter.allow("account:a", 5, 1000)

        clock.advance(1000)
        decision = await limiter.allow("account:a", 5, 1000)
        assert decision.allowed is True
        assert decision.count == 1
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_entry_at_window_edge_is_pruned(self, limiter, clock):
        """An entry exactly window_ms old no longer counts."""
        await limiter.allow("account:a", 1, 1000)
        clock.advance(1000)
        decision = await limiter.allow("account:a", 1, 1000)
        assert decision.allowed is True
        assert decision.count == 1

    @pytest.mark.asyncio
    async def test_denied_requests_are_recorded(self, limiter, clock):
        """Rejected calls occupy the window like admitted ones."""
        await limiter.allow("account:a", 2, 1000)
        await limiter.allow("account:a", 2, 1000)
        clock.advance(500)
        denied = await limiter.allow("account:a", 2, 1000)
        assert denied.allowed is False

        # The two entries at t=0 expire, the denied one at t=500 remains
        clock.advance(501)
        decision = await limiter.allow("account:a", 2, 1000)
        assert decision.allowed is True
        assert decision.count == 2
        assert decision.remaining == 0

    @pytest.mark.asyncio
    async def test_reset_follows_oldest_entry(self, limiter, clock):
        """Reset time is the oldest surviving entry plus the window."""
        start = clock()
        await limiter.allow("account:a", 5, 1000)
        clock.advance(300)
        decision = await limiter.allow("account:a", 5, 1000)
        assert decision.reset_at_ms == start + 1000

    @pytest.mark.asyncio
    async def test_headers(self, clock):
        """Headers carry limit, remaining and reset in epoch seconds."""
        clock.now_ms = 1_700_000_000_250
        limiter = SlidingWindowLimiter(InMemorySlidingWindowStore(), clock=clock)
        decision = await limiter.allow("account:a", 5, 1000)

        assert decision.headers() == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "1700000002",
        }

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        """Each key has its own window."""
        for _ in range(5):
            await limiter.allow("account:a", 5, 1000)

        decision = await limiter.allow("account:b", 5, 1000)
        assert decision.allowed is True
        assert decision.count == 1

    @pytest.mark.asyncio
    async def test_reset_clears_key(self, limiter):
        for _ in range(6):
            await limiter.allow("account:a", 5, 1000)

        await limiter.reset("account:a")
        decision = await limiter.allow("account:a", 5, 1000)
        assert decision.allowed is True
        assert decision.count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit,window_ms", [(0, 1000), (5, 0), (-1, -1)])
    async def test_invalid_arguments(self, limiter, limit, window_ms):
        with pytest.raises(ValueError):
            await limiter.allow("account:a", limit, window_ms)

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, clock):
        """Store errors reach the caller untouched."""
        store = AsyncMock()
        store.record_and_count.side_effect = RateLimiterStoreError(key="account:a")
        limiter = SlidingWindowLimiter(store, clock=clock)

        with pytest.raises(RateLimiterStoreError):
            await limiter.allow("account:a", 5, 1000)

    @pytest.mark.asyncio
    async def test_grace_extends_store_ttl(self, clock):
        """The store receives window + grace as the key TTL."""
        store = InMemorySlidingWindowStore()
        store.record_and_count = AsyncMock(wraps=store.record_and_count)
        limiter = SlidingWindowLimiter(store, grace_ms=250, clock=clock)

        await limiter.allow("account:a", 5, 1000)

        store.record_and_count.assert_awaited_once_with(
            "account:a", clock(), 1000, 1250
        )
