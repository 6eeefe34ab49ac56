"""
Rate Limiting Services

Sliding window rate limiting with pluggable atomic stores.
"""

from .rate_limiter import RateLimitDecision, SlidingWindowLimiter
from .stores import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowStore,
    WindowSnapshot,
)

__all__ = [
    "RateLimitDecision",
    "SlidingWindowLimiter",
    "SlidingWindowStore",
    "RedisSlidingWindowStore",
    "InMemorySlidingWindowStore",
    "WindowSnapshot",
]
