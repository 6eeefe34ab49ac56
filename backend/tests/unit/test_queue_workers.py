"""
Queue Worker Tests

Job processing, failure handoff and pool lifecycle against the
in-memory queue.
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
import respx

from webhook_relay.core.exceptions import CollaboratorError
from webhook_relay.core.metrics import RelayMetrics
from webhook_relay.domain.entities import DeliveryStatus, Event
from webhook_relay.services.dispatch import Dispatcher
from webhook_relay.services.queues import (
    InMemoryEventQueue,
    QueueWorker,
    RetryPolicy,
    WorkerPool,
)

D1_URL = "http://d1.example.test/hook"
D2_URL = "http://d2.example.test/hook"


def make_event(event_id: str) -> Event:
    return Event(event_id=event_id, account_id="acct-1", payload={})


class TestQueueWorker:
    """Test cases for QueueWorker."""

    @pytest.fixture
    def queue(self, clock):
        return InMemoryEventQueue(
            retry_policy=RetryPolicy(max_attempts=3, base_delay_ms=500), clock=clock
        )

    @pytest.fixture
    def metrics(self):
        return RelayMetrics()

    @pytest.mark.asyncio
    async def test_process_next_acks_on_success(self, queue, metrics):
        handler = AsyncMock()
        worker = QueueWorker("w1", queue, handler, metrics=metrics)
        await queue.enqueue(make_event("evt-1"))

        assert await worker.process_next() is True

        handler.assert_awaited_once()
        assert handler.await_args.args[0].event.event_id == "evt-1"
        stats = await queue.stats()
        assert stats["active"] == 0
        assert stats["waiting"] == 0
        assert worker.get_stats()["stats"]["jobs_completed"] == 1
        assert metrics.registry.get_sample_value(
            "relay_jobs_total", {"outcome": "completed"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_process_next_empty_queue(self, queue):
        worker = QueueWorker("w1", queue, AsyncMock())
        assert await worker.process_next() is False

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, queue, clock):
        handler = AsyncMock(side_effect=CollaboratorError("destinations"))
        worker = QueueWorker("w1", queue, handler)
        await queue.enqueue(make_event("evt-1"))

        await worker.process_next()

        stats = await queue.stats()
        assert stats["delayed"] == 1
        assert stats["active"] == 0
        assert worker.get_stats()["stats"]["jobs_failed"] == 1

        clock.advance(500)
        assert await worker.process_next() is True
        assert handler.await_count == 2
        assert handler.await_args.args[0].attempts_made == 2

    @pytest.mark.asyncio
    async def test_exhausted_job_is_logged_and_dead_lettered(
        self, queue, clock, metrics, caplog
    ):
        handler = AsyncMock(side_effect=CollaboratorError("delivery_log"))
        worker = QueueWorker("w1", queue, handler, metrics=metrics)
        job_id = await queue.enqueue(make_event("evt-1"))

        with caplog.at_level(logging.ERROR):
            for _ in range(3):
                assert await worker.process_next() is True
                clock.advance(10_000)

        dead = await queue.list_dead_letters()
        assert [entry.job_id for entry in dead] == [job_id]
        assert dead[0].last_error.startswith("CollaboratorError")

        failures = [r for r in caplog.records if r.getMessage() == "Job failed"]
        assert len(failures) == 1
        assert failures[0].levelno == logging.ERROR
        assert failures[0].job_id == job_id
        assert failures[0].event_id == "evt-1"
        assert failures[0].attempts == 3

        assert worker.get_stats()["stats"]["jobs_dead_lettered"] == 1
        assert metrics.registry.get_sample_value(
            "relay_jobs_total", {"outcome": "dead_lettered"}
        ) == 1.0
        assert metrics.registry.get_sample_value(
            "relay_jobs_total", {"outcome": "retry_scheduled"}
        ) == 2.0

    @pytest.mark.asyncio
    async def test_lease_is_extended_while_running(self, queue):
        queue.extend_lease = AsyncMock(return_value=True)
        release = asyncio.Event()

        async def slow_handler(job):
            await release.wait()

        worker = QueueWorker("w1", queue, slow_handler, lease_refresh_interval=0.01)
        await queue.enqueue(make_event("evt-1"))

        task = asyncio.create_task(worker.process_next())
        await asyncio.sleep(0.05)
        release.set()
        await task

        assert queue.extend_lease.await_count >= 1
        assert (await queue.stats())["active"] == 0

    @pytest.mark.asyncio
    async def test_in_flight_jobs_never_exceed_limit(self):
        queue = InMemoryEventQueue()
        in_flight = 0
        peak = 0
        finished = []
        done = asyncio.Event()

        async def handler(job):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.05)
            in_flight -= 1
            finished.append(job.event.event_id)
            if len(finished) == 20:
                done.set()

        for i in range(20):
            await queue.enqueue(make_event(f"evt-{i}"))

        worker = QueueWorker(
            "w1", queue, handler, max_concurrent_jobs=2, poll_interval=0.01
        )
        runner = asyncio.create_task(worker.start())
        await asyncio.wait_for(done.wait(), timeout=5)
        await worker.stop(graceful_timeout=1)
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)

        assert peak == 2
        assert len(finished) == 20
        stats = await queue.stats()
        assert stats["active"] == 0
        assert stats["waiting"] == 0


class TestWorkerPool:
    """Test cases for WorkerPool."""

    @pytest.mark.asyncio
    async def test_pool_processes_jobs_until_stopped(self):
        queue = InMemoryEventQueue()
        processed = []
        done = asyncio.Event()

        async def handler(job):
            processed.append(job.event.event_id)
            if len(processed) == 3:
                done.set()

        pool = WorkerPool(
            "dispatch", queue, handler, pool_size=2, poll_interval=0.01
        )
        for i in range(3):
            await queue.enqueue(make_event(f"evt-{i}"))

        await pool.start()
        assert pool.running is True
        await asyncio.wait_for(done.wait(), timeout=5)

        stats = pool.get_pool_stats()
        assert stats["total_workers"] == 2
        assert [w["worker_id"] for w in stats["workers"]] == ["dispatch-0", "dispatch-1"]

        await pool.stop(graceful_timeout=1)

        assert pool.running is False
        assert sorted(processed) == ["evt-0", "evt-1", "evt-2"]
        assert (await queue.stats())["active"] == 0

    @pytest.mark.asyncio
    async def test_run_returns_after_stop(self):
        pool = WorkerPool("dispatch", InMemoryEventQueue(), AsyncMock(), poll_interval=0.01)

        runner = asyncio.create_task(pool.run())
        await asyncio.sleep(0.05)
        await pool.stop(graceful_timeout=1)

        await asyncio.wait_for(runner, timeout=5)
        assert runner.done()


class TestRedeliveryAfterCrash:
    """A job whose worker dies before acknowledging is delivered again."""

    @pytest_asyncio.fixture
    async def http_client(self):
        async with httpx.AsyncClient() as client:
            yield client

    @pytest.mark.asyncio
    @respx.mock
    async def test_unacked_job_is_redelivered_with_duplicate_rows(
        self, clock, destinations, delivery_log, event, http_client
    ):
        respx.post(D1_URL).mock(return_value=httpx.Response(200))
        respx.post(D2_URL).mock(side_effect=httpx.ConnectError("refused"))
        queue = InMemoryEventQueue(visibility_timeout_ms=30_000, clock=clock)
        dispatcher = Dispatcher(destinations, delivery_log, http_client, timeout_seconds=2.0)
        job_id = await queue.enqueue(event)

        # First worker fans out, then dies without acking
        crashed = await queue.reserve("w1")
        await dispatcher.handle_job(crashed)

        worker = QueueWorker("w2", queue, dispatcher.handle_job)
        assert await worker.process_next() is False

        clock.advance(30_000)
        assert await worker.process_next() is True

        rows = delivery_log.for_event(event.event_id)
        assert len([r for r in rows if r.status == DeliveryStatus.PROCESSING]) == 2
        assert sorted(
            r.destination_id for r in rows if r.status == DeliveryStatus.SUCCESS
        ) == [1, 1]
        assert sorted(
            r.destination_id for r in rows if r.status == DeliveryStatus.FAILED
        ) == [2, 2]

        assert worker.get_stats()["stats"]["jobs_completed"] == 1
        stats = await queue.stats()
        assert stats["active"] == 0
        assert stats["waiting"] == 0
        assert stats["dead"] == 0

        # The stale lease can no longer settle the job
        assert await queue.ack(crashed) is False
        assert await queue.requeue_dead_letter(job_id) is False
