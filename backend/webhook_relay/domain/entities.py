"""
Relay Domain Entities

Core entities flowing through the ingestion and dispatch pipeline.
Accounts and destinations are read-only snapshots owned by the CRUD layer;
events are immutable once accepted; delivery attempts are append-only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryStatus(str, Enum):
    """Lifecycle state of an event relative to the pipeline or one destination."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class Account(BaseModel):
    """Tenant identified by a stable id and a secret ingestion credential."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    account_id: str
    account_name: str = ""
    app_secret_token: str
    website: Optional[str] = None


class Destination(BaseModel):
    """Registered HTTP endpoint receiving fan-out copies of account events."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    account_id: str
    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        """Blank methods fall back to POST; others are upper-cased."""
        return (v or "POST").upper()

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v):
        """Stored headers may be NULL or carry non-string values."""
        if not v:
            return {}
        return {str(key): str(value) for key, value in dict(v).items()}


class Event(BaseModel):
    """One inbound payload accepted for delivery."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    payload: Any = None
    received_at: datetime = Field(default_factory=utcnow)


class DeliveryAttempt(BaseModel):
    """One append-only delivery log row."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    account_id: str
    status: DeliveryStatus
    destination_id: Optional[int] = None
    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    payload_snapshot: Any = None

    @classmethod
    def processing(cls, event: Event) -> "DeliveryAttempt":
        """Checkpoint row written before any network call."""
        return cls(
            event_id=event.event_id,
            account_id=event.account_id,
            status=DeliveryStatus.PROCESSING,
            received_at=event.received_at,
            payload_snapshot=event.payload,
        )

    @classmethod
    def outcome(
        cls, event: Event, destination: Destination, succeeded: bool
    ) -> "DeliveryAttempt":
        """Terminal row for one destination."""
        return cls(
            event_id=event.event_id,
            account_id=event.account_id,
            destination_id=destination.id,
            status=DeliveryStatus.SUCCESS if succeeded else DeliveryStatus.FAILED,
            received_at=event.received_at,
            processed_at=utcnow(),
        )
