"""
Queue Services

Durable at-least-once event queue with Redis and in-memory brokers,
job-level exponential backoff, dead-lettering and worker pools.
"""

from .event_queue import DeadLetterEntry, EventQueue, JobOutcome, QueuedJob
from .memory_queue import InMemoryEventQueue
from .redis_queue import RedisEventQueue
from .retry import RetryPolicy
from .workers import QueueWorker, WorkerPool

__all__ = [
    "EventQueue",
    "QueuedJob",
    "DeadLetterEntry",
    "JobOutcome",
    "InMemoryEventQueue",
    "RedisEventQueue",
    "RetryPolicy",
    "QueueWorker",
    "WorkerPool",
]
