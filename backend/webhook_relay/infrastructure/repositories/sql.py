"""
SQL Collaborator Repositories

SQLAlchemy implementations of the account resolver, destination directory
and delivery log writer. SQLAlchemy errors are translated into
CollaboratorError so that dispatch failures consume the job retry budget.
"""

from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ...core.database import DatabaseManager
from ...core.exceptions import CollaboratorError
from ...domain.entities import Account, DeliveryAttempt, Destination
from ...domain.interfaces import AccountResolver, DeliveryLogWriter, DestinationDirectory
from ...models import Account as AccountModel
from ...models import DeliveryLog
from ...models import Destination as DestinationModel

logger = structlog.get_logger()


class SqlAccountRepository(AccountResolver):
    """Resolves accounts from the ``accounts`` table."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def resolve_account_by_token(self, token: str) -> Optional[Account]:
        try:
            async with self.database.get_session() as session:
                stmt = select(AccountModel).where(
                    AccountModel.app_secret_token == token
                )
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Repository: Failed to resolve account", error=str(e))
            raise CollaboratorError("accounts", original_error=e) from e

        return Account.model_validate(row) if row else None


class SqlDestinationRepository(DestinationDirectory):
    """Lists destinations from the ``destinations`` table."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def list_destinations(self, account_id: str) -> List[Destination]:
        try:
            async with self.database.get_session() as session:
                stmt = (
                    select(DestinationModel)
                    .where(DestinationModel.account_id == account_id)
                    .order_by(DestinationModel.id)
                )
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Repository: Failed to list destinations",
                account_id=account_id,
                error=str(e),
            )
            raise CollaboratorError("destinations", original_error=e) from e

        return [Destination.model_validate(row) for row in rows]


class SqlDeliveryLogRepository(DeliveryLogWriter):
    """Appends rows to the ``logs`` table. Never updates."""

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def append_log(self, record: DeliveryAttempt) -> None:
        row = DeliveryLog(
            event_id=record.event_id,
            account_id=record.account_id,
            destination_id=record.destination_id,
            received_timestamp=record.received_at,
            processed_timestamp=record.processed_at,
            received_data=record.payload_snapshot,
            status=record.status.value,
        )
        try:
            async with self.database.get_session() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error(
                "Repository: Failed to append delivery log",
                event_id=record.event_id,
                status=record.status.value,
                error=str(e),
            )
            raise CollaboratorError("delivery_log", original_error=e) from e

    async def list_for_event(self, event_id: str) -> List[DeliveryAttempt]:
        """Rows recorded for one event, oldest first."""
        try:
            async with self.database.get_session() as session:
                stmt = (
                    select(DeliveryLog)
                    .where(DeliveryLog.event_id == event_id)
                    .order_by(DeliveryLog.id)
                )
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise CollaboratorError("delivery_log", original_error=e) from e

        return [
            DeliveryAttempt(
                event_id=row.event_id,
                account_id=row.account_id,
                destination_id=row.destination_id,
                status=row.status,
                received_at=row.received_timestamp,
                processed_at=row.processed_timestamp,
                payload_snapshot=row.received_data,
            )
            for row in rows
        ]
