"""
Redis-Cached Collaborators

Read-through TTL caches in front of the account resolver and destination
directory. A cache outage degrades to direct lookups; it never fails a
request on its own.
"""

import hashlib
import json
import logging
from typing import List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ...domain.entities import Account, Destination
from ...domain.interfaces import AccountResolver, DestinationDirectory

logger = logging.getLogger(__name__)


class RedisCachedAccountResolver(AccountResolver):
    """Caches token to account lookups for ``ttl_seconds``."""

    def __init__(
        self,
        inner: AccountResolver,
        redis_client: Redis,
        ttl_seconds: int = 60,
        key_prefix: str = "cache:account",
    ):
        self.inner = inner
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, token: str) -> str:
        # Raw credentials are never written into key names
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"{self.key_prefix}:{digest}"

    async def resolve_account_by_token(self, token: str) -> Optional[Account]:
        key = self._key(token)
        try:
            cached = await self._redis.get(key)
            if cached:
                return Account.model_validate_json(cached)
        except RedisError as e:
            logger.warning(f"Account cache read failed: {e}")

        account = await self.inner.resolve_account_by_token(token)
        if account is None or self.ttl_seconds <= 0:
            return account

        try:
            await self._redis.setex(key, self.ttl_seconds, account.model_dump_json())
        except RedisError as e:
            logger.warning(f"Account cache write failed: {e}")
        return account

    async def invalidate(self, token: str) -> None:
        """Drop the cached entry for ``token``."""
        try:
            await self._redis.delete(self._key(token))
        except RedisError as e:
            logger.warning(f"Account cache invalidation failed: {e}")


class RedisCachedDestinationDirectory(DestinationDirectory):
    """Caches per-account destination snapshots for ``ttl_seconds``."""

    def __init__(
        self,
        inner: DestinationDirectory,
        redis_client: Redis,
        ttl_seconds: int = 60,
        key_prefix: str = "cache:destinations",
    ):
        self.inner = inner
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, account_id: str) -> str:
        return f"{self.key_prefix}:{account_id}"

    async def list_destinations(self, account_id: str) -> List[Destination]:
        key = self._key(account_id)
        try:
            cached = await self._redis.get(key)
            if cached is not None:
                return [Destination.model_validate(item) for item in json.loads(cached)]
        except RedisError as e:
            logger.warning(f"Destination cache read failed: {e}")

        destinations = await self.inner.list_destinations(account_id)
        if self.ttl_seconds <= 0:
            return destinations

        payload = json.dumps([d.model_dump(mode="json") for d in destinations])
        try:
            await self._redis.setex(key, self.ttl_seconds, payload)
        except RedisError as e:
            logger.warning(f"Destination cache write failed: {e}")
        return destinations

    async def invalidate(self, account_id: str) -> None:
        """Drop the cached snapshot for ``account_id``."""
        try:
            await self._redis.delete(self._key(account_id))
        except RedisError as e:
            logger.warning(f"Destination cache invalidation failed: {e}")
