"""
Application Container

Builds the limiter, queue, collaborators, HTTP client, admission gate,
dispatcher and worker pool once per process from Settings, and tears them
down in reverse order.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
import structlog
from redis.asyncio import Redis

from .core.config import Settings
from .core.database import DatabaseManager
from .core.metrics import RelayMetrics
from .domain.interfaces import AccountResolver, DeliveryLogWriter, DestinationDirectory
from .infrastructure.redis import RedisConnectionFactory
from .infrastructure.repositories import (
    RedisCachedAccountResolver,
    RedisCachedDestinationDirectory,
    SqlAccountRepository,
    SqlDeliveryLogRepository,
    SqlDestinationRepository,
)
from .services.admission import AdmissionGate
from .services.dispatch import Dispatcher
from .services.queues import (
    EventQueue,
    InMemoryEventQueue,
    RedisEventQueue,
    RetryPolicy,
    WorkerPool,
)
from .services.rate_limiting import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowLimiter,
    SlidingWindowStore,
)

logger = structlog.get_logger()


@dataclass
class RelayContainer:
    """Process-wide service graph."""

    settings: Settings
    metrics: RelayMetrics
    limiter: SlidingWindowLimiter
    queue: EventQueue
    accounts: AccountResolver
    destinations: DestinationDirectory
    log_writer: DeliveryLogWriter
    http_client: httpx.AsyncClient
    gate: AdmissionGate
    dispatcher: Dispatcher
    worker_pool: WorkerPool
    redis_factory: Optional[RedisConnectionFactory] = None
    database: Optional[DatabaseManager] = None
    _owned_http_client: bool = field(default=True, repr=False)

    async def start_workers(self) -> None:
        await self.worker_pool.start()

    async def readiness(self) -> Dict[str, Any]:
        """Dependency status for the readiness probe."""
        checks: Dict[str, Any] = {}
        if self.database is not None:
            checks["database"] = await self.database.health_check()
        if self.redis_factory is not None:
            checks["redis"] = await self.redis_factory.health_check()
        return checks

    async def close(self) -> None:
        """Stop workers and release connections."""
        await self.worker_pool.stop()
        if self._owned_http_client:
            await self.http_client.aclose()
        if self.redis_factory is not None:
            await self.redis_factory.close()
        if self.database is not None:
            await self.database.close()
        logger.info("Container closed")


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        base_delay_ms=settings.QUEUE_BACKOFF_MS,
    )


async def build_container(
    settings: Settings,
    *,
    redis_client: Optional[Redis] = None,
    accounts: Optional[AccountResolver] = None,
    destinations: Optional[DestinationDirectory] = None,
    log_writer: Optional[DeliveryLogWriter] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RelayContainer:
    """
    Build the service graph.

    Collaborators and clients passed in are used as-is; anything omitted is
    built from settings. The database is only opened when at least one
    collaborator has to come from it.

    Args:
        settings: Application settings
        redis_client: Pre-built Redis client (skips the connection factory)
        accounts: Account resolver override
        destinations: Destination directory override
        log_writer: Delivery log override
        http_client: HTTP client used for deliveries

    Returns:
        Wired container; call ``close()`` on shutdown
    """
    metrics = RelayMetrics()

    redis_factory: Optional[RedisConnectionFactory] = None
    if redis_client is None and settings.uses_redis:
        redis_factory = RedisConnectionFactory(settings)
        redis_client = await redis_factory.initialize()

    database: Optional[DatabaseManager] = None
    if accounts is None or destinations is None or log_writer is None:
        database = DatabaseManager(settings)
        await database.initialize()
        if settings.DATABASE_URL.startswith("sqlite"):
            await database.create_all()

        if accounts is None:
            accounts = SqlAccountRepository(database)
            if redis_client is not None and settings.CACHE_TTL_SECONDS > 0:
                accounts = RedisCachedAccountResolver(
                    accounts, redis_client, ttl_seconds=settings.CACHE_TTL_SECONDS
                )
        if destinations is None:
            destinations = SqlDestinationRepository(database)
            if redis_client is not None and settings.CACHE_TTL_SECONDS > 0:
                destinations = RedisCachedDestinationDirectory(
                    destinations, redis_client, ttl_seconds=settings.CACHE_TTL_SECONDS
                )
        if log_writer is None:
            log_writer = SqlDeliveryLogRepository(database)

    store: SlidingWindowStore
    if settings.RATE_LIMIT_BACKEND == "redis":
        store = RedisSlidingWindowStore(redis_client)
    else:
        store = InMemorySlidingWindowStore()
    limiter = SlidingWindowLimiter(store, grace_ms=settings.RATE_LIMIT_GRACE_MS)

    retry_policy = build_retry_policy(settings)
    visibility_ms = settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS * 1000
    queue: EventQueue
    if settings.QUEUE_BACKEND == "redis":
        queue = RedisEventQueue(
            redis_client,
            key_prefix=settings.queue_key,
            retry_policy=retry_policy,
            visibility_timeout_ms=visibility_ms,
        )
    else:
        queue = InMemoryEventQueue(
            retry_policy=retry_policy, visibility_timeout_ms=visibility_ms
        )

    owned_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=settings.DELIVERY_TIMEOUT_SECONDS,
            limits=httpx.Limits(max_connections=settings.DELIVERY_MAX_PARALLEL * 10),
        )

    gate = AdmissionGate(
        accounts=accounts,
        limiter=limiter,
        queue=queue,
        rate_limit=settings.RATE_LIMIT_MAX,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        fail_open=settings.RATE_LIMIT_FAIL_OPEN,
        token_header=settings.TOKEN_HEADER,
        event_id_header=settings.EVENT_ID_HEADER,
        metrics=metrics,
    )
    dispatcher = Dispatcher(
        destinations=destinations,
        log_writer=log_writer,
        http_client=http_client,
        timeout_seconds=settings.DELIVERY_TIMEOUT_SECONDS,
        max_parallel=settings.DELIVERY_MAX_PARALLEL,
        event_id_header=settings.CORRELATION_HEADER,
        metrics=metrics,
    )
    worker_pool = WorkerPool(
        pool_name=settings.QUEUE_NAME,
        queue=queue,
        handler=dispatcher.handle_job,
        pool_size=settings.WORKER_POOL_SIZE,
        max_concurrent_per_worker=settings.WORKER_CONCURRENCY,
        poll_interval=settings.WORKER_POLL_INTERVAL,
        lease_refresh_interval=settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS / 2,
        metrics=metrics,
    )

    logger.info(
        "Container built",
        rate_limit_backend=settings.RATE_LIMIT_BACKEND,
        queue_backend=settings.QUEUE_BACKEND,
        queue_key=settings.queue_key,
        database=database is not None,
    )

    return RelayContainer(
        settings=settings,
        metrics=metrics,
        limiter=limiter,
        queue=queue,
        accounts=accounts,
        destinations=destinations,
        log_writer=log_writer,
        http_client=http_client,
        gate=gate,
        dispatcher=dispatcher,
        worker_pool=worker_pool,
        redis_factory=redis_factory,
        database=database,
        _owned_http_client=owned_http_client,
    )
