"""
Event Queue

Durable, at-least-once job queue decoupling ingestion from delivery.

A reserved job is leased to one worker. If the lease is neither acked nor
extended before it expires the job is redelivered; failed jobs are retried
with exponential backoff until the retry budget is spent and are then moved
to the dead-letter list.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...domain.entities import Event, utcnow


class JobOutcome(str, Enum):
    """What happened to a job reported as failed."""

    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    LEASE_LOST = "lease_lost"


class QueuedJob(BaseModel):
    """A leased unit of work carrying one event."""

    job_id: str
    event: Event
    max_attempts: int = Field(default=3, ge=1)
    attempts_made: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    worker_id: Optional[str] = None
    lease_token: Optional[str] = None
    last_error: Optional[str] = None


class DeadLetterEntry(BaseModel):
    """A job whose retry budget is exhausted."""

    job_id: str
    event: Event
    attempts_made: int
    last_error: Optional[str] = None
    failed_at_ms: Optional[int] = None


class EventQueue(ABC):
    """Abstract event queue."""

    @abstractmethod
    async def enqueue(self, event: Event) -> str:
        """
        Durably store an event for dispatch.

        Returns:
            Job ID

        Raises:
            EventQueueError: If the broker is unavailable
        """
        pass

    @abstractmethod
    async def reserve(self, worker_id: str) -> Optional[QueuedJob]:
        """
        Lease the next ready job to ``worker_id``.

        Stalled leases are recovered and due delayed jobs promoted first.
        Returns None when nothing is ready.
        """
        pass

    @abstractmethod
    async def ack(self, job: QueuedJob) -> bool:
        """Mark a leased job complete. False if the lease was lost."""
        pass

    @abstractmethod
    async def fail(self, job: QueuedJob, error: str) -> JobOutcome:
        """Report a failed run; schedules a retry or dead-letters the job."""
        pass

    @abstractmethod
    async def extend_lease(self, job: QueuedJob) -> bool:
        """Push the lease deadline forward. False if the lease was lost."""
        pass

    @abstractmethod
    async def recover_stalled(self) -> int:
        """Requeue or dead-letter jobs whose lease expired. Returns the count."""
        pass

    @abstractmethod
    async def list_dead_letters(self, limit: int = 100) -> List[DeadLetterEntry]:
        """Most recent dead-lettered jobs first."""
        pass

    @abstractmethod
    async def requeue_dead_letter(self, job_id: str) -> bool:
        """Move a dead-lettered job back to the queue with a fresh budget."""
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Counts of waiting, delayed, active and dead jobs."""
        pass
