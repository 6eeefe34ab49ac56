"""
Rate Limiter Service

Sliding window rate limiter used to gate ingestion per account.
The limiter is backend-agnostic: atomicity is delegated to the
SlidingWindowStore it is constructed with.
"""

import logging
import math
import time
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.exceptions import RateLimiterStoreError
from .stores import SlidingWindowStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class RateLimitDecision(BaseModel):
    """Result of a sliding window check."""

    allowed: bool = Field(..., description="Whether request is allowed")
    count: int = Field(..., description="Entries in the window, this one included")
    remaining: int = Field(..., description="Remaining requests in the window")
    reset_at_ms: int = Field(..., description="Epoch ms when the oldest entry expires")
    limit: int = Field(..., description="Rate limit threshold")
    window_ms: int = Field(..., description="Window length in milliseconds")
    key: str = Field(..., description="Rate limit key")

    @property
    def reset_at_seconds(self) -> int:
        """Reset time as epoch seconds, rounded up."""
        return math.ceil(self.reset_at_ms / 1000)

    def headers(self) -> Dict[str, str]:
        """Rate limit response headers."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_seconds),
        }


class SlidingWindowLimiter:
    """
    Sliding window rate limiter.

    Every call records the request (allowed or not), prunes entries older
    than the window and compares the surviving count with the limit. The
    call that reaches exactly ``limit`` is still allowed.
    """

    def __init__(
        self,
        store: SlidingWindowStore,
        grace_ms: int = 1000,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            store: Atomic sliding window store
            grace_ms: Extra TTL beyond the window for abandoned keys
            clock: Returns the current time in epoch milliseconds
        """
        self._store = store
        self._grace_ms = grace_ms
        self._clock = clock or _epoch_ms

    async def allow(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        """
        Record one request for ``key`` and decide whether it is admitted.

        Args:
            key: Rate limit key, e.g. ``account:<id>``
            limit: Maximum requests per window (inclusive)
            window_ms: Window length in milliseconds

        Returns:
            Rate limit decision

        Raises:
            ValueError: If limit or window are not positive
            RateLimiterStoreError: If the store is unavailable
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        with tracer.start_as_current_span("rate_limiter.allow") as span:
            span.set_attribute("rate_limit.key", key)
            span.set_attribute("rate_limit.limit", limit)
            span.set_attribute("rate_limit.window_ms", window_ms)

            now = self._clock()
            try:
                snapshot = await self._store.record_and_count(
                    key, now, window_ms, window_ms + self._grace_ms
                )
            except RateLimiterStoreError as e:
                span.set_status(Status(StatusCode.ERROR, e.message))
                span.record_exception(e)
                raise

            if snapshot.oldest_ms is not None:
                reset_at = snapshot.oldest_ms + window_ms
            else:
                reset_at = now + window_ms

            decision = RateLimitDecision(
                allowed=snapshot.count <= limit,
                count=snapshot.count,
                remaining=max(0, limit - snapshot.count),
                reset_at_ms=reset_at,
                limit=limit,
                window_ms=window_ms,
                key=key,
            )

            span.set_attribute("rate_limit.allowed", decision.allowed)
            span.set_attribute("rate_limit.count", decision.count)
            span.set_attribute("rate_limit.remaining", decision.remaining)

            if not decision.allowed:
                logger.warning(
                    f"Rate limit exceeded for {key}",
                    extra={
                        "key": key,
                        "count": decision.count,
                        "limit": limit,
                        "window_ms": window_ms,
                        "reset_at_ms": reset_at,
                    },
                )

            return decision

    async def reset(self, key: str) -> None:
        """
        Reset rate limit for key.

        Raises:
            RateLimiterStoreError: If the store is unavailable
        """
        await self._store.reset(key)
        logger.info(f"Reset rate limit for {key}")
