"""
In-Memory Event Queue

Single-process implementation of the event queue with the same lease,
retry and dead-letter semantics as the Redis broker. Not durable across
restarts; intended for tests and local development.
"""

import asyncio
import heapq
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from uuid import uuid4

from ...domain.entities import Event, utcnow
from .event_queue import DeadLetterEntry, EventQueue, JobOutcome, QueuedJob
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class InMemoryEventQueue(EventQueue):
    """Event queue held in process memory behind one asyncio lock."""

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        visibility_timeout_ms: int = 30_000,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.visibility_timeout_ms = visibility_timeout_ms
        self._clock = clock or _epoch_ms
        self._lock = asyncio.Lock()

        self._jobs: Dict[str, QueuedJob] = {}
        self._waiting: Deque[str] = deque()
        self._delayed: List[Tuple[int, str]] = []
        self._active: Dict[str, int] = {}
        self._dead: Deque[Tuple[str, int]] = deque()

    async def enqueue(self, event: Event) -> str:
        job = QueuedJob(
            job_id=uuid4().hex,
            event=event,
            max_attempts=self.retry_policy.max_attempts,
        )
        async with self._lock:
            self._jobs[job.job_id] = job
            self._waiting.append(job.job_id)

        logger.info(
            f"Enqueued job {job.job_id} for event {event.event_id}",
            extra={"job_id": job.job_id, "event_id": event.event_id},
        )
        return job.job_id

    async def reserve(self, worker_id: str) -> Optional[QueuedJob]:
        await self.recover_stalled()

        async with self._lock:
            now = self._clock()
            while self._delayed and self._delayed[0][0] <= now:
                _, job_id = heapq.heappop(self._delayed)
                self._waiting.append(job_id)

            if not self._waiting:
                return None

            job_id = self._waiting.popleft()
            job = self._jobs[job_id].model_copy(
                update={
                    "attempts_made": self._jobs[job_id].attempts_made + 1,
                    "worker_id": worker_id,
                    "lease_token": f"{worker_id}:{uuid4().hex}",
                }
            )
            self._jobs[job_id] = job
            self._active[job_id] = now + self.visibility_timeout_ms
            return job

    def _owns_lease(self, job: QueuedJob) -> bool:
        current = self._jobs.get(job.job_id)
        return (
            current is not None
            and job.job_id in self._active
            and current.lease_token == job.lease_token
        )

    async def ack(self, job: QueuedJob) -> bool:
        async with self._lock:
            if not self._owns_lease(job):
                logger.warning(f"Ack for job {job.job_id} without a valid lease")
                return False
            del self._active[job.job_id]
            del self._jobs[job.job_id]
            return True

    async def fail(self, job: QueuedJob, error: str) -> JobOutcome:
        async with self._lock:
            if not self._owns_lease(job):
                logger.warning(f"Failure for job {job.job_id} without a valid lease")
                return JobOutcome.LEASE_LOST

            del self._active[job.job_id]
            self._jobs[job.job_id] = self._jobs[job.job_id].model_copy(
                update={"last_error": error}
            )
            return self._retry_or_bury(job.job_id, job.attempts_made)

    def _retry_or_bury(self, job_id: str, attempts_made: int) -> JobOutcome:
        now = self._clock()
        if self.retry_policy.should_retry(attempts_made):
            delay = self.retry_policy.delay_ms(attempts_made)
            heapq.heappush(self._delayed, (now + delay, job_id))
            return JobOutcome.RETRY_SCHEDULED

        self._dead.appendleft((job_id, now))
        return JobOutcome.DEAD_LETTERED

    async def extend_lease(self, job: QueuedJob) -> bool:
        async with self._lock:
            if not self._owns_lease(job):
                return False
            self._active[job.job_id] = self._clock() + self.visibility_timeout_ms
            return True

    async def recover_stalled(self) -> int:
        async with self._lock:
            now = self._clock()
            stalled = [job_id for job_id, deadline in self._active.items() if deadline <= now]

            for job_id in stalled:
                del self._active[job_id]
                job = self._jobs[job_id].model_copy(
                    update={"last_error": "job stalled", "lease_token": None}
                )
                self._jobs[job_id] = job

                if self.retry_policy.should_retry(job.attempts_made):
                    # Redeliver ahead of fresh work
                    self._waiting.appendleft(job_id)
                else:
                    self._dead.appendleft((job_id, now))

            if stalled:
                logger.warning(
                    f"Recovered {len(stalled)} stalled jobs",
                    extra={"job_ids": stalled},
                )
            return len(stalled)

    async def list_dead_letters(self, limit: int = 100) -> List[DeadLetterEntry]:
        async with self._lock:
            entries = []
            for job_id, failed_at in list(self._dead)[:limit]:
                job = self._jobs[job_id]
                entries.append(
                    DeadLetterEntry(
                        job_id=job_id,
                        event=job.event,
                        attempts_made=job.attempts_made,
                        last_error=job.last_error,
                        failed_at_ms=failed_at,
                    )
                )
            return entries

    async def requeue_dead_letter(self, job_id: str) -> bool:
        async with self._lock:
            for entry in self._dead:
                if entry[0] == job_id:
                    self._dead.remove(entry)
                    break
            else:
                return False

            self._jobs[job_id] = self._jobs[job_id].model_copy(
                update={
                    "attempts_made": 0,
                    "last_error": None,
                    "lease_token": None,
                    "created_at": utcnow(),
                }
            )
            self._waiting.append(job_id)
            return True

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            return {
                "backend": "memory",
                "waiting": len(self._waiting),
                "delayed": len(self._delayed),
                "active": len(self._active),
                "dead": len(self._dead),
            }
