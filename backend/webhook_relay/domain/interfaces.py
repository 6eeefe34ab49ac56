"""
Collaborator Interfaces

Narrow contracts through which the pipeline reaches the account/destination
CRUD layer and the delivery log. Implementations live in
``webhook_relay.infrastructure.repositories``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .entities import Account, DeliveryAttempt, Destination


class AccountResolver(ABC):
    """Resolves an account from its secret ingestion credential."""

    @abstractmethod
    async def resolve_account_by_token(self, token: str) -> Optional[Account]:
        """Return the account owning ``token`` or None."""
        pass


class DestinationDirectory(ABC):
    """Lists the destinations registered for an account."""

    @abstractmethod
    async def list_destinations(self, account_id: str) -> List[Destination]:
        """Return the current destination snapshot for ``account_id``."""
        pass


class DeliveryLogWriter(ABC):
    """Append-only sink for delivery attempt rows."""

    @abstractmethod
    async def append_log(self, record: DeliveryAttempt) -> None:
        """Persist one row. Never updates existing rows."""
        pass
