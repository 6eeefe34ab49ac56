"""
Queue Retry Policies

Job-level retry policy for the event queue. A retry re-runs the whole
fan-out for an event, never an individual destination.
"""

import random
from typing import Optional

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """Exponential backoff retry policy configuration."""

    max_attempts: int = Field(
        default=3, ge=1, le=20, description="Maximum delivery attempts per job"
    )
    base_delay_ms: int = Field(
        default=500, ge=0, description="Delay before the second attempt"
    )
    multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_ms: int = Field(default=300_000, ge=0)
    jitter: bool = Field(default=False, description="Add up to 10% random jitter")

    def should_retry(self, attempts_made: int) -> bool:
        """True while the job has attempts left after ``attempts_made`` runs."""
        return attempts_made < self.max_attempts

    def delay_ms(self, attempts_made: int, rng: Optional[random.Random] = None) -> int:
        """
        Backoff before the next attempt.

        Args:
            attempts_made: Attempts already consumed (1 after the first failure)

        Returns:
            Delay in milliseconds: ``base * multiplier ** (attempts_made - 1)``
        """
        exponent = max(0, attempts_made - 1)
        delay = min(self.base_delay_ms * (self.multiplier**exponent), self.max_delay_ms)

        if self.jitter and delay > 0:
            delay += (rng or random).uniform(0, delay * 0.1)

        return int(delay)
