"""
Collaborator Repositories

SQL, Redis-cached and in-memory implementations of the account resolver,
destination directory and delivery log.
"""

from .cached import RedisCachedAccountResolver, RedisCachedDestinationDirectory
from .memory import (
    InMemoryAccountResolver,
    InMemoryDeliveryLog,
    InMemoryDestinationDirectory,
)
from .sql import SqlAccountRepository, SqlDeliveryLogRepository, SqlDestinationRepository

__all__ = [
    "SqlAccountRepository",
    "SqlDestinationRepository",
    "SqlDeliveryLogRepository",
    "RedisCachedAccountResolver",
    "RedisCachedDestinationDirectory",
    "InMemoryAccountResolver",
    "InMemoryDestinationDirectory",
    "InMemoryDeliveryLog",
]
