"""
Event Dispatcher

Fans one accepted event out to every destination registered for its
account and records the outcome of each delivery in the delivery log.

A delivery succeeds when the destination answers at all, whatever the
HTTP status. Transport errors and timeouts mark that destination failed
without affecting the others and are never retried individually; only
collaborator failures escalate to the job and consume its retry budget.
"""

import asyncio
import time
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...core.exceptions import CollaboratorError
from ...core.metrics import RelayMetrics
from ...domain.entities import DeliveryAttempt, Destination, Event
from ...domain.interfaces import DeliveryLogWriter, DestinationDirectory
from ..queues.event_queue import QueuedJob

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)


class DeliveryOutcome(BaseModel):
    """Result of one delivery attempt to one destination."""

    destination_id: int
    url: str
    method: str
    succeeded: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


class DispatchReport(BaseModel):
    """Summary of one fan-out run."""

    event_id: str
    account_id: str
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)

    @property
    def destination_count(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.destination_count - self.succeeded


class Dispatcher:
    """
    Fan-out dispatcher.

    Deliveries for one event run concurrently, at most ``max_parallel`` at a
    time, over a shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        destinations: DestinationDirectory,
        log_writer: DeliveryLogWriter,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 10.0,
        max_parallel: int = 10,
        event_id_header: str = "X-EVENT-ID",
        metrics: Optional[RelayMetrics] = None,
    ):
        self.destinations = destinations
        self.log_writer = log_writer
        self.http_client = http_client
        self.timeout_seconds = timeout_seconds
        self.max_parallel = max_parallel
        self.event_id_header = event_id_header
        self.metrics = metrics

    async def handle_job(self, job: QueuedJob) -> DispatchReport:
        """Queue worker entry point."""
        return await self.dispatch(job.event)

    async def dispatch(self, event: Event) -> DispatchReport:
        """
        Deliver ``event`` to all destinations of its account.

        Returns:
            Report with one outcome per destination

        Raises:
            CollaboratorError: If the log or destination lookup fails
        """
        with tracer.start_as_current_span("dispatcher.dispatch") as span:
            span.set_attribute("event.id", event.event_id)
            span.set_attribute("account.id", event.account_id)

            try:
                await self.log_writer.append_log(DeliveryAttempt.processing(event))
                destinations = await self.destinations.list_destinations(
                    event.account_id
                )
            except CollaboratorError as e:
                span.set_status(Status(StatusCode.ERROR, e.message))
                span.record_exception(e)
                raise

            span.set_attribute("dispatch.destinations", len(destinations))
            report = DispatchReport(
                event_id=event.event_id, account_id=event.account_id
            )

            if not destinations:
                logger.info(
                    "No destinations registered",
                    event_id=event.event_id,
                    account_id=event.account_id,
                )
                return report

            semaphore = asyncio.Semaphore(self.max_parallel)

            async def bounded(destination: Destination) -> DeliveryOutcome:
                async with semaphore:
                    return await self._deliver_and_record(event, destination)

            results = await asyncio.gather(
                *(bounded(destination) for destination in destinations),
                return_exceptions=True,
            )

            errors = []
            for result in results:
                if isinstance(result, BaseException):
                    errors.append(result)
                else:
                    report.outcomes.append(result)

            span.set_attribute("dispatch.succeeded", report.succeeded)
            span.set_attribute("dispatch.failed", report.failed)

            if errors:
                # Every destination has been attempted; the first log failure
                # fails the job
                span.set_status(Status(StatusCode.ERROR, str(errors[0])))
                raise errors[0]

            logger.info(
                "Event dispatched",
                event_id=event.event_id,
                account_id=event.account_id,
                destinations=report.destination_count,
                succeeded=report.succeeded,
                failed=report.failed,
            )
            return report

    async def _deliver_and_record(
        self, event: Event, destination: Destination
    ) -> DeliveryOutcome:
        outcome = await self.deliver(event, destination)
        if self.metrics:
            self.metrics.record_delivery(outcome.succeeded, outcome.duration_ms / 1000)
        await self.log_writer.append_log(
            DeliveryAttempt.outcome(event, destination, outcome.succeeded)
        )
        return outcome

    def build_headers(self, event: Event, destination: Destination) -> dict:
        """Destination headers with the event id header merged in."""
        headers = dict(destination.headers)
        headers[self.event_id_header] = event.event_id
        return headers

    async def deliver(self, event: Event, destination: Destination) -> DeliveryOutcome:
        """Send one request to one destination. Never raises."""
        started = time.perf_counter()

        with tracer.start_as_current_span("dispatcher.deliver") as span:
            span.set_attribute("event.id", event.event_id)
            span.set_attribute("destination.id", destination.id)
            span.set_attribute("http.method", destination.method)
            span.set_attribute("http.url", destination.url)

            try:
                response = await self.http_client.request(
                    destination.method,
                    destination.url,
                    json=event.payload,
                    headers=self.build_headers(event, destination),
                    timeout=self.timeout_seconds,
                )
            except Exception as e:
                duration_ms = (time.perf_counter() - started) * 1000
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                logger.warning(
                    "Delivery failed",
                    event_id=event.event_id,
                    destination_id=destination.id,
                    url=destination.url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return DeliveryOutcome(
                    destination_id=destination.id,
                    url=destination.url,
                    method=destination.method,
                    succeeded=False,
                    error=f"{type(e).__name__}: {e}",
                    duration_ms=duration_ms,
                )

            duration_ms = (time.perf_counter() - started) * 1000
            span.set_attribute("http.status_code", response.status_code)
            logger.debug(
                "Delivery completed",
                event_id=event.event_id,
                destination_id=destination.id,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            return DeliveryOutcome(
                destination_id=destination.id,
                url=destination.url,
                method=destination.method,
                succeeded=True,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
