"""
Sliding Window Stores

Storage backends for the sliding window limiter. Each store performs
insert, prune, count and peek-oldest as one atomic unit per call.
"""

import asyncio
import bisect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ...core.exceptions import RateLimiterStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowSnapshot:
    """State of one key right after recording a request."""

    count: int
    oldest_ms: Optional[int]


class SlidingWindowStore(ABC):
    """Abstract sliding window store."""

    @abstractmethod
    async def record_and_count(
        self, key: str, now_ms: int, window_ms: int, ttl_ms: int
    ) -> WindowSnapshot:
        """
        Atomically record a request at ``now_ms`` and report the window.

        Args:
            key: Rate limit key
            now_ms: Current time in epoch milliseconds
            window_ms: Window length in milliseconds
            ttl_ms: Expiry applied to the key after the update

        Returns:
            Count of entries in ``(now_ms - window_ms, now_ms]`` including the
            new one, and the oldest surviving timestamp

        Raises:
            RateLimiterStoreError: If the store is unavailable
        """
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Drop all entries recorded for ``key``."""
        pass


class RedisSlidingWindowStore(SlidingWindowStore):
    """
    Sliding window store backed by a Redis sorted set.

    Scores are epoch milliseconds; members carry a random suffix so that
    requests landing in the same millisecond are distinct entries.
    """

    SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local member = ARGV[3]
    local ttl = tonumber(ARGV[4])

    redis.call('ZADD', key, now, member)
    redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
    local count = redis.call('ZCARD', key)
    redis.call('PEXPIRE', key, ttl)

    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    local oldest_score = -1
    if oldest[2] then
        oldest_score = tonumber(oldest[2])
    end

    return {count, oldest_score}
    """

    def __init__(self, redis_client: Redis, key_prefix: str = "ratelimit"):
        self._redis = redis_client
        self._key_prefix = key_prefix
        # register_script runs EVALSHA and reloads the script on NOSCRIPT
        self._script = redis_client.register_script(self.SLIDING_WINDOW_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def record_and_count(
        self, key: str, now_ms: int, window_ms: int, ttl_ms: int
    ) -> WindowSnapshot:
        member = f"{now_ms}-{uuid4().hex[:12]}"
        try:
            count, oldest = await self._script(
                keys=[self._key(key)],
                args=[now_ms, window_ms, member, ttl_ms],
            )
        except RedisError as e:
            raise RateLimiterStoreError(key=key, original_error=e) from e

        oldest_ms = int(oldest)
        return WindowSnapshot(
            count=int(count), oldest_ms=oldest_ms if oldest_ms >= 0 else None
        )

    async def reset(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except RedisError as e:
            raise RateLimiterStoreError(key=key, original_error=e) from e


@dataclass
class _Window:
    timestamps: List[int] = field(default_factory=list)
    expires_at_ms: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class InMemorySlidingWindowStore(SlidingWindowStore):
    """
    In-process sliding window store.

    A per-key ``asyncio.Lock`` guards a sorted list of timestamps. Only valid
    for single-instance deployments.
    """

    PURGE_EVERY = 1024

    def __init__(self):
        self._windows: Dict[str, _Window] = {}
        self._operations = 0

    async def record_and_count(
        self, key: str, now_ms: int, window_ms: int, ttl_ms: int
    ) -> WindowSnapshot:
        self._operations += 1
        if self._operations % self.PURGE_EVERY == 0:
            self.purge_expired(now_ms)

        while True:
            window = self._windows.setdefault(key, _Window())
            async with window.lock:
                # Purged or reset while we waited for the lock
                if self._windows.get(key) is not window:
                    continue
                return self._record(window, now_ms, window_ms, ttl_ms)

    @staticmethod
    def _record(
        window: _Window, now_ms: int, window_ms: int, ttl_ms: int
    ) -> WindowSnapshot:
        if window.expires_at_ms and window.expires_at_ms <= now_ms:
            window.timestamps.clear()

        bisect.insort(window.timestamps, now_ms)
        cutoff = bisect.bisect_right(window.timestamps, now_ms - window_ms)
        del window.timestamps[:cutoff]
        window.expires_at_ms = now_ms + ttl_ms

        oldest = window.timestamps[0] if window.timestamps else None
        return WindowSnapshot(count=len(window.timestamps), oldest_ms=oldest)

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def purge_expired(self, now_ms: Optional[int] = None) -> int:
        """Drop keys whose TTL has elapsed. Returns the number removed."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        expired = [
            key
            for key, window in self._windows.items()
            if window.expires_at_ms and window.expires_at_ms <= now_ms
            and not window.lock.locked()
        ]
        for key in expired:
            del self._windows[key]
        return len(expired)
