"""
Redis Infrastructure Module

Shared connection pool management.
"""

from .connection_factory import RedisConnectionFactory

__all__ = ["RedisConnectionFactory"]
