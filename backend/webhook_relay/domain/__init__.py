"""
Relay Domain

Entities and collaborator contracts shared by the admission gate,
event queue and dispatcher.
"""

from .entities import (
    Account,
    DeliveryAttempt,
    DeliveryStatus,
    Destination,
    Event,
)
from .interfaces import AccountResolver, DeliveryLogWriter, DestinationDirectory

__all__ = [
    "Account",
    "DeliveryAttempt",
    "DeliveryStatus",
    "Destination",
    "Event",
    "AccountResolver",
    "DeliveryLogWriter",
    "DestinationDirectory",
]
