"""
In-Memory Collaborators

Dictionary-backed account resolver, destination directory and delivery
log for tests and single-process local runs.
"""

import asyncio
from typing import Dict, List, Optional

from ...domain.entities import Account, DeliveryAttempt, DeliveryStatus, Destination
from ...domain.interfaces import AccountResolver, DeliveryLogWriter, DestinationDirectory


class InMemoryAccountResolver(AccountResolver):
    """Accounts keyed by their ingestion token."""

    def __init__(self, accounts: Optional[List[Account]] = None):
        self._by_token: Dict[str, Account] = {}
        for account in accounts or []:
            self.add(account)

    def add(self, account: Account) -> None:
        self._by_token[account.app_secret_token] = account

    async def resolve_account_by_token(self, token: str) -> Optional[Account]:
        return self._by_token.get(token)


class InMemoryDestinationDirectory(DestinationDirectory):
    """Destinations grouped by account, in registration order."""

    def __init__(self, destinations: Optional[List[Destination]] = None):
        self._by_account: Dict[str, List[Destination]] = {}
        for destination in destinations or []:
            self.add(destination)

    def add(self, destination: Destination) -> None:
        self._by_account.setdefault(destination.account_id, []).append(destination)

    def clear(self, account_id: str) -> None:
        self._by_account.pop(account_id, None)

    async def list_destinations(self, account_id: str) -> List[Destination]:
        return list(self._by_account.get(account_id, []))


class InMemoryDeliveryLog(DeliveryLogWriter):
    """Append-only list of delivery rows."""

    def __init__(self):
        self._records: List[DeliveryAttempt] = []
        self._lock = asyncio.Lock()

    async def append_log(self, record: DeliveryAttempt) -> None:
        async with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[DeliveryAttempt]:
        return list(self._records)

    def for_event(self, event_id: str) -> List[DeliveryAttempt]:
        return [r for r in self._records if r.event_id == event_id]

    def with_status(self, status: DeliveryStatus) -> List[DeliveryAttempt]:
        return [r for r in self._records if r.status == status]
