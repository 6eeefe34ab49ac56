"""
Webhook Relay Database Models

SQLAlchemy models for the relay tables. ``accounts`` and ``destinations``
are owned by the CRUD layer and only read here; ``logs`` is append-only.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

DELIVERY_STATUSES = ("queued", "processing", "success", "failed")


class Base(DeclarativeBase):
    """Canonical Base class for all database models."""

    pass


class Account(Base):
    """Tenant account with its ingestion credential."""

    __tablename__ = "accounts"

    account_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    app_secret_token: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    website: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    destinations: Mapped[list["Destination"]] = relationship(
        "Destination", back_populates="account", cascade="all, delete-orphan"
    )


class Destination(Base):
    """Registered delivery endpoint of an account."""

    __tablename__ = "destinations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("accounts.account_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="POST")
    headers: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    account: Mapped["Account"] = relationship("Account", back_populates="destinations")


class DeliveryLog(Base):
    """Append-only delivery log row."""

    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    destination_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    received_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    processed_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    received_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'success', 'failed')",
            name="check_log_status",
        ),
        Index("idx_logs_account_received", "account_id", "received_timestamp"),
        Index("idx_logs_destination", "destination_id"),
        Index("idx_logs_status", "status"),
    )
