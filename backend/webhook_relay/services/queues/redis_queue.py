"""
Redis Event Queue

Durable event queue on Redis. Layout under the configured prefix
(``bp:events`` by default):

- ``<prefix>:job:<id>``  hash with the serialized job and its counters
- ``<prefix>:wait``      list of ready job ids (LPUSH in, RPOP out)
- ``<prefix>:delayed``   sorted set of job ids scored by ready time
- ``<prefix>:active``    sorted set of leased job ids scored by lease deadline
- ``<prefix>:dead``      list of dead-lettered job ids, newest first

State transitions run as Lua scripts so a job is never in two
structures at once.

The scripts address job hashes through the prefix passed in ``ARGV``
rather than ``KEYS``, so every key must live on one node. Run against a
single Redis instance, or under Redis Cluster give the prefix a hash tag
(``{bp:events}``) so all keys map to the same slot.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.exceptions import EventQueueError
from ...domain.entities import Event
from .event_queue import DeadLetterEntry, EventQueue, JobOutcome, QueuedJob
from .retry import RetryPolicy

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


RESERVE_SCRIPT = """
local wait_key = KEYS[1]
local delayed_key = KEYS[2]
local active_key = KEYS[3]
local now = tonumber(ARGV[1])
local lease_ms = tonumber(ARGV[2])
local worker_id = ARGV[3]
local token = ARGV[4]
local job_prefix = ARGV[5]

local due = redis.call('ZRANGEBYSCORE', delayed_key, '-inf', now)
for _, id in ipairs(due) do
    redis.call('ZREM', delayed_key, id)
    redis.call('LPUSH', wait_key, id)
end

while true do
    local id = redis.call('RPOP', wait_key)
    if not id then
        return nil
    end

    local job_key = job_prefix .. id
    if redis.call('EXISTS', job_key) == 1 then
        local attempts = redis.call('HINCRBY', job_key, 'attempts_made', 1)
        redis.call('HSET', job_key, 'worker_id', worker_id, 'lease', token)
        redis.call('ZADD', active_key, now + lease_ms, id)
        return {id, redis.call('HGET', job_key, 'data'), attempts}
    end
end
"""

RECOVER_SCRIPT = """
local wait_key = KEYS[1]
local active_key = KEYS[2]
local dead_key = KEYS[3]
local now = tonumber(ARGV[1])
local job_prefix = ARGV[2]

local stalled = redis.call('ZRANGEBYSCORE', active_key, '-inf', now)
for _, id in ipairs(stalled) do
    redis.call('ZREM', active_key, id)
    local job_key = job_prefix .. id
    local attempts = tonumber(redis.call('HGET', job_key, 'attempts_made') or 0)
    local max_attempts = tonumber(redis.call('HGET', job_key, 'max_attempts') or 1)
    redis.call('HSET', job_key, 'last_error', 'job stalled')
    redis.call('HDEL', job_key, 'lease')

    if attempts < max_attempts then
        redis.call('RPUSH', wait_key, id)
    else
        redis.call('HSET', job_key, 'failed_at', now)
        redis.call('LPUSH', dead_key, id)
    end
end

return #stalled
"""

ACK_SCRIPT = """
local active_key = KEYS[1]
local id = ARGV[1]
local job_key = ARGV[3] .. id

if redis.call('HGET', job_key, 'lease') ~= ARGV[2] then
    return 0
end
if not redis.call('ZSCORE', active_key, id) then
    return 0
end

redis.call('ZREM', active_key, id)
redis.call('DEL', job_key)
return 1
"""

FAIL_SCRIPT = """
local active_key = KEYS[1]
local delayed_key = KEYS[2]
local dead_key = KEYS[3]
local id = ARGV[1]
local now = tonumber(ARGV[4])
local delay = tonumber(ARGV[5])
local job_key = ARGV[7] .. id

if redis.call('HGET', job_key, 'lease') ~= ARGV[2] then
    return 0
end
if not redis.call('ZSCORE', active_key, id) then
    return 0
end

redis.call('ZREM', active_key, id)
redis.call('HSET', job_key, 'last_error', ARGV[3])
redis.call('HDEL', job_key, 'lease')

if ARGV[6] == '1' then
    redis.call('ZADD', delayed_key, now + delay, id)
    return 1
end

redis.call('HSET', job_key, 'failed_at', now)
redis.call('LPUSH', dead_key, id)
return 2
"""

EXTEND_SCRIPT = """
local active_key = KEYS[1]
local id = ARGV[1]
local job_key = ARGV[4] .. id

if redis.call('HGET', job_key, 'lease') ~= ARGV[2] then
    return 0
end
if not redis.call('ZSCORE', active_key, id) then
    return 0
end

redis.call('ZADD', active_key, 'XX', tonumber(ARGV[3]), id)
return 1
"""

REQUEUE_SCRIPT = """
local dead_key = KEYS[1]
local wait_key = KEYS[2]
local id = ARGV[1]
local job_key = ARGV[2] .. id

if redis.call('LREM', dead_key, 1, id) == 0 then
    return 0
end

redis.call('HSET', job_key, 'attempts_made', 0)
redis.call('HDEL', job_key, 'last_error', 'failed_at', 'lease', 'worker_id')
redis.call('LPUSH', wait_key, id)
return 1
"""


class RedisEventQueue(EventQueue):
    """
    Event queue backed by Redis lists, sorted sets and hashes.

    Leases are tokens stored on the job hash; ack, fail and extend are
    rejected once the lease has been recovered by another worker.
    """

    def __init__(
        self,
        redis_client: Redis,
        key_prefix: str = "bp:events",
        retry_policy: Optional[RetryPolicy] = None,
        visibility_timeout_ms: int = 30_000,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._redis = redis_client
        self.key_prefix = key_prefix
        self.retry_policy = retry_policy or RetryPolicy()
        self.visibility_timeout_ms = visibility_timeout_ms
        self._clock = clock or _epoch_ms

        self.wait_key = f"{key_prefix}:wait"
        self.delayed_key = f"{key_prefix}:delayed"
        self.active_key = f"{key_prefix}:active"
        self.dead_key = f"{key_prefix}:dead"
        self.job_prefix = f"{key_prefix}:job:"

        self._reserve = redis_client.register_script(RESERVE_SCRIPT)
        self._recover = redis_client.register_script(RECOVER_SCRIPT)
        self._ack = redis_client.register_script(ACK_SCRIPT)
        self._fail = redis_client.register_script(FAIL_SCRIPT)
        self._extend = redis_client.register_script(EXTEND_SCRIPT)
        self._requeue = redis_client.register_script(REQUEUE_SCRIPT)

    def _job_key(self, job_id: str) -> str:
        return f"{self.job_prefix}{job_id}"

    async def enqueue(self, event: Event) -> str:
        job = QueuedJob(
            job_id=uuid4().hex,
            event=event,
            max_attempts=self.retry_policy.max_attempts,
        )
        data = job.model_dump_json(
            include={"job_id", "event", "max_attempts", "created_at"}
        )

        with tracer.start_as_current_span("event_queue.enqueue") as span:
            span.set_attribute("queue.prefix", self.key_prefix)
            span.set_attribute("job.id", job.job_id)
            span.set_attribute("event.id", event.event_id)

            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.hset(
                        self._job_key(job.job_id),
                        mapping={
                            "data": data,
                            "attempts_made": 0,
                            "max_attempts": job.max_attempts,
                        },
                    )
                    pipe.lpush(self.wait_key, job.job_id)
                    await pipe.execute()
            except RedisError as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise EventQueueError(
                    "enqueue", job_id=job.job_id, original_error=e
                ) from e

        logger.info(
            f"Enqueued job {job.job_id} for event {event.event_id}",
            extra={"job_id": job.job_id, "event_id": event.event_id},
        )
        return job.job_id

    async def reserve(self, worker_id: str) -> Optional[QueuedJob]:
        await self.recover_stalled()

        token = f"{worker_id}:{uuid4().hex}"
        try:
            result = await self._reserve(
                keys=[self.wait_key, self.delayed_key, self.active_key],
                args=[
                    self._clock(),
                    self.visibility_timeout_ms,
                    worker_id,
                    token,
                    self.job_prefix,
                ],
            )
        except RedisError as e:
            raise EventQueueError("reserve", original_error=e) from e

        if not result:
            return None

        _, data, attempts = result
        job = QueuedJob.model_validate_json(data)
        return job.model_copy(
            update={
                "attempts_made": int(attempts),
                "worker_id": worker_id,
                "lease_token": token,
            }
        )

    async def ack(self, job: QueuedJob) -> bool:
        try:
            acked = await self._ack(
                keys=[self.active_key],
                args=[job.job_id, job.lease_token or "", self.job_prefix],
            )
        except RedisError as e:
            raise EventQueueError("ack", job_id=job.job_id, original_error=e) from e

        if not int(acked):
            logger.warning(f"Ack for job {job.job_id} without a valid lease")
            return False
        return True

    async def fail(self, job: QueuedJob, error: str) -> JobOutcome:
        retry = self.retry_policy.should_retry(job.attempts_made)
        delay = self.retry_policy.delay_ms(job.attempts_made) if retry else 0

        try:
            result = await self._fail(
                keys=[self.active_key, self.delayed_key, self.dead_key],
                args=[
                    job.job_id,
                    job.lease_token or "",
                    error,
                    self._clock(),
                    delay,
                    "1" if retry else "0",
                    self.job_prefix,
                ],
            )
        except RedisError as e:
            raise EventQueueError("fail", job_id=job.job_id, original_error=e) from e

        result = int(result)
        if result == 0:
            logger.warning(f"Failure for job {job.job_id} without a valid lease")
            return JobOutcome.LEASE_LOST
        if result == 1:
            return JobOutcome.RETRY_SCHEDULED
        return JobOutcome.DEAD_LETTERED

    async def extend_lease(self, job: QueuedJob) -> bool:
        try:
            extended = await self._extend(
                keys=[self.active_key],
                args=[
                    job.job_id,
                    job.lease_token or "",
                    self._clock() + self.visibility_timeout_ms,
                    self.job_prefix,
                ],
            )
        except RedisError as e:
            raise EventQueueError(
                "extend_lease", job_id=job.job_id, original_error=e
            ) from e
        return bool(int(extended))

    async def recover_stalled(self) -> int:
        try:
            recovered = int(
                await self._recover(
                    keys=[self.wait_key, self.active_key, self.dead_key],
                    args=[self._clock(), self.job_prefix],
                )
            )
        except RedisError as e:
            raise EventQueueError("recover_stalled", original_error=e) from e

        if recovered:
            logger.warning(f"Recovered {recovered} stalled jobs")
        return recovered

    async def list_dead_letters(self, limit: int = 100) -> List[DeadLetterEntry]:
        try:
            job_ids = await self._redis.lrange(self.dead_key, 0, limit - 1)
            async with self._redis.pipeline(transaction=False) as pipe:
                for job_id in job_ids:
                    pipe.hgetall(self._job_key(job_id))
                records = await pipe.execute()
        except RedisError as e:
            raise EventQueueError("list_dead_letters", original_error=e) from e

        entries = []
        for job_id, record in zip(job_ids, records):
            if not record or "data" not in record:
                continue
            job = QueuedJob.model_validate_json(record["data"])
            failed_at = record.get("failed_at")
            entries.append(
                DeadLetterEntry(
                    job_id=job_id,
                    event=job.event,
                    attempts_made=int(record.get("attempts_made", 0)),
                    last_error=record.get("last_error"),
                    failed_at_ms=int(failed_at) if failed_at else None,
                )
            )
        return entries

    async def requeue_dead_letter(self, job_id: str) -> bool:
        try:
            requeued = await self._requeue(
                keys=[self.dead_key, self.wait_key],
                args=[job_id, self.job_prefix],
            )
        except RedisError as e:
            raise EventQueueError(
                "requeue_dead_letter", job_id=job_id, original_error=e
            ) from e

        if int(requeued):
            logger.info(f"Requeued dead-lettered job {job_id}")
            return True
        return False

    async def stats(self) -> Dict[str, Any]:
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.llen(self.wait_key)
                pipe.zcard(self.delayed_key)
                pipe.zcard(self.active_key)
                pipe.llen(self.dead_key)
                waiting, delayed, active, dead = await pipe.execute()
        except RedisError as e:
            raise EventQueueError("stats", original_error=e) from e

        return {
            "backend": "redis",
            "prefix": self.key_prefix,
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "dead": dead,
        }
