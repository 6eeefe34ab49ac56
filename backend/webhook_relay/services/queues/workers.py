"""
Queue Workers

Background workers that lease jobs from the event queue and run them
through a handler. Provides worker pools, lease heartbeats, and
retry / dead-letter handoff on failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.exceptions import EventQueueError
from ...core.metrics import RelayMetrics
from ...domain.entities import utcnow
from .event_queue import EventQueue, JobOutcome, QueuedJob

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JobHandler = Callable[[QueuedJob], Awaitable[Any]]


class QueueWorker:
    """
    Individual queue worker.

    Runs up to ``max_concurrent_jobs`` jobs at once. While a job runs its
    lease is extended every ``lease_refresh_interval`` seconds.
    """

    def __init__(
        self,
        worker_id: str,
        queue: EventQueue,
        handler: JobHandler,
        max_concurrent_jobs: int = 5,
        poll_interval: float = 0.5,
        lease_refresh_interval: float = 15.0,
        metrics: Optional[RelayMetrics] = None,
    ):
        """
        Initialize queue worker.

        Args:
            worker_id: Unique worker identifier
            queue: Event queue to lease jobs from
            handler: Coroutine run for every leased job
            max_concurrent_jobs: Maximum concurrent jobs
            poll_interval: Polling interval in seconds when the queue is empty
            lease_refresh_interval: Seconds between lease extensions
        """
        self.worker_id = worker_id
        self.queue = queue
        self.handler = handler
        self.max_concurrent_jobs = max_concurrent_jobs
        self.poll_interval = poll_interval
        self.lease_refresh_interval = lease_refresh_interval
        self.metrics = metrics

        self._running = False
        self._current_jobs: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._stats = {
            "jobs_processed": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
            "jobs_dead_lettered": 0,
            "start_time": None,
            "last_activity": None,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the worker loop until stopped."""
        if self._running:
            return

        self._running = True
        self._stats["start_time"] = utcnow()
        logger.info(f"Starting worker {self.worker_id}")

        try:
            await self._worker_loop()
        except Exception as e:
            logger.error(f"Worker {self.worker_id} crashed: {e}")
            raise
        finally:
            logger.info(f"Worker {self.worker_id} loop exited")

    async def stop(self, graceful_timeout: float = 30) -> None:
        """
        Stop the worker gracefully.

        Args:
            graceful_timeout: Seconds to wait for in-flight jobs
        """
        logger.info(f"Stopping worker {self.worker_id}")
        self._running = False

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} jobs to complete")
            _, pending = await asyncio.wait(set(self._tasks), timeout=graceful_timeout)
            if pending:
                # Unacked jobs are redelivered after their lease expires
                logger.warning(
                    f"Worker {self.worker_id} shutdown timeout, {len(pending)} jobs still running"
                )
                for task in pending:
                    task.cancel()

    async def _worker_loop(self) -> None:
        while self._running:
            # A slot is held from reserve until the job's task finishes
            try:
                await self._slots.acquire()
            except asyncio.CancelledError:
                break
            if not self._running:
                self._slots.release()
                break

            job = None
            try:
                job = await self.queue.reserve(self.worker_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Worker {self.worker_id} error in main loop: {e}")
            finally:
                if job is None:
                    self._slots.release()

            if job:
                task = asyncio.create_task(self.process_job(job))
                self._tasks.add(task)
                task.add_done_callback(self._job_done)
                continue

            try:
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break

    def _job_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()

    async def process_next(self) -> bool:
        """
        Lease and run a single job inline.

        Returns:
            True if a job was processed, False if nothing was ready
        """
        job = await self.queue.reserve(self.worker_id)
        if job is None:
            return False
        await self.process_job(job)
        return True

    async def process_job(self, job: QueuedJob) -> None:
        """Run one leased job and report the outcome to the queue."""
        self._current_jobs.add(job.job_id)
        self._stats["last_activity"] = utcnow()
        heartbeat = asyncio.create_task(self._keep_lease(job))

        with tracer.start_as_current_span("worker.process_job") as span:
            span.set_attribute("worker_id", self.worker_id)
            span.set_attribute("job.id", job.job_id)
            span.set_attribute("job.attempt", job.attempts_made)
            span.set_attribute("event.id", job.event.event_id)

            try:
                await self.handler(job)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                heartbeat.cancel()
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                self._stats["jobs_failed"] += 1
                await self._handle_job_failure(job, e)

            else:
                heartbeat.cancel()
                try:
                    await self.queue.ack(job)
                    self._stats["jobs_completed"] += 1
                    if self.metrics:
                        self.metrics.record_job("completed")
                except EventQueueError as e:
                    logger.error(
                        f"Failed to ack job {job.job_id}: {e}",
                        extra={"job_id": job.job_id},
                    )

            finally:
                heartbeat.cancel()
                self._current_jobs.discard(job.job_id)
                self._stats["jobs_processed"] += 1

    async def _handle_job_failure(self, job: QueuedJob, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        try:
            outcome = await self.queue.fail(job, message)
        except EventQueueError as e:
            logger.error(
                f"Failed to report failure for job {job.job_id}: {e}",
                extra={"job_id": job.job_id},
            )
            return

        if self.metrics:
            self.metrics.record_job(outcome.value)

        if outcome == JobOutcome.DEAD_LETTERED:
            self._stats["jobs_dead_lettered"] += 1
            logger.error(
                "Job failed",
                extra={
                    "job_id": job.job_id,
                    "event_id": job.event.event_id,
                    "attempts": job.attempts_made,
                    "error": message,
                },
            )
        elif outcome == JobOutcome.RETRY_SCHEDULED:
            logger.info(
                f"Job {job.job_id} scheduled for retry ({job.attempts_made}/{job.max_attempts})",
                extra={"job_id": job.job_id, "error": message},
            )

    async def _keep_lease(self, job: QueuedJob) -> None:
        while True:
            await asyncio.sleep(self.lease_refresh_interval)
            try:
                if not await self.queue.extend_lease(job):
                    logger.warning(f"Lease lost for job {job.job_id}")
                    return
            except EventQueueError as e:
                logger.warning(f"Could not extend lease for job {job.job_id}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics."""
        runtime = None
        if self._stats["start_time"]:
            runtime = (utcnow() - self._stats["start_time"]).total_seconds()

        return {
            "worker_id": self.worker_id,
            "running": self._running,
            "current_jobs": len(self._current_jobs),
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "stats": self._stats.copy(),
            "runtime_seconds": runtime,
        }


class WorkerPool:
    """
    Pool of queue workers sharing one queue and one handler.

    ``start`` launches the workers as background tasks and returns;
    ``run`` additionally blocks until ``stop`` is called.
    """

    def __init__(
        self,
        pool_name: str,
        queue: EventQueue,
        handler: JobHandler,
        pool_size: int = 2,
        max_concurrent_per_worker: int = 5,
        poll_interval: float = 0.5,
        lease_refresh_interval: float = 15.0,
        metrics: Optional[RelayMetrics] = None,
    ):
        """
        Initialize worker pool.

        Args:
            pool_name: Pool identifier, used as the worker id prefix
            queue: Event queue shared by all workers
            handler: Coroutine run for every leased job
            pool_size: Number of workers
            max_concurrent_per_worker: Max concurrent jobs per worker
        """
        self.pool_name = pool_name
        self.queue = queue
        self.handler = handler
        self.pool_size = pool_size
        self.max_concurrent_per_worker = max_concurrent_per_worker
        self.poll_interval = poll_interval
        self.lease_refresh_interval = lease_refresh_interval
        self.metrics = metrics

        self._workers: List[QueueWorker] = []
        self._worker_tasks: List[asyncio.Task] = []
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the workers in the background."""
        if self._running:
            return

        self._running = True
        self._shutdown_event = asyncio.Event()
        logger.info(f"Starting worker pool {self.pool_name}")

        for i in range(self.pool_size):
            worker = QueueWorker(
                worker_id=f"{self.pool_name}-{i}",
                queue=self.queue,
                handler=self.handler,
                max_concurrent_jobs=self.max_concurrent_per_worker,
                poll_interval=self.poll_interval,
                lease_refresh_interval=self.lease_refresh_interval,
                metrics=self.metrics,
            )
            self._workers.append(worker)
            self._worker_tasks.append(asyncio.create_task(worker.start()))

        logger.info(
            f"Worker pool {self.pool_name} started with {len(self._workers)} workers"
        )

    async def run(self) -> None:
        """Start the pool and block until it is stopped."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self, graceful_timeout: float = 30) -> None:
        """
        Stop the worker pool.

        Args:
            graceful_timeout: Timeout for graceful shutdown
        """
        if not self._running:
            return

        logger.info(f"Stopping worker pool {self.pool_name}")
        self._running = False

        await asyncio.gather(
            *(worker.stop(graceful_timeout) for worker in self._workers),
            return_exceptions=True,
        )

        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)

        self._workers.clear()
        self._worker_tasks.clear()
        self._shutdown_event.set()
        logger.info(f"Worker pool {self.pool_name} stopped")

    def get_pool_stats(self) -> Dict[str, Any]:
        """Get worker pool statistics."""
        total_stats = {
            "pool_name": self.pool_name,
            "running": self._running,
            "total_workers": len(self._workers),
            "total_current_jobs": 0,
            "total_processed": 0,
            "total_completed": 0,
            "total_failed": 0,
            "workers": [],
        }

        for worker in self._workers:
            worker_stats = worker.get_stats()
            total_stats["workers"].append(worker_stats)
            total_stats["total_current_jobs"] += worker_stats["current_jobs"]
            total_stats["total_processed"] += worker_stats["stats"]["jobs_processed"]
            total_stats["total_completed"] += worker_stats["stats"]["jobs_completed"]
            total_stats["total_failed"] += worker_stats["stats"]["jobs_failed"]

        return total_stats
