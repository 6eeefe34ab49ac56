"""relay_tables

Revision ID: 001_relay_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_relay_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create accounts table
    op.create_table(
        "accounts",
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("account_name", sa.String(length=255), nullable=False),
        sa.Column("app_secret_token", sa.String(length=255), nullable=False),
        sa.Column("website", sa.String(length=2048), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("account_id"),
    )
    op.create_index(
        op.f("ix_accounts_app_secret_token"),
        "accounts",
        ["app_secret_token"],
        unique=True,
    )

    # Create destinations table
    op.create_table(
        "destinations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["account_id"], ["accounts.account_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_destinations_account_id"), "destinations", ["account_id"]
    )

    # Create append-only delivery log
    op.create_table(
        "logs",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            autoincrement=True,
            nullable=False,
        ),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("destination_id", sa.Integer(), nullable=True),
        sa.Column("received_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'success', 'failed')",
            name="check_log_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_logs_event_id"), "logs", ["event_id"])
    op.create_index(
        "idx_logs_account_received", "logs", ["account_id", "received_timestamp"]
    )
    op.create_index("idx_logs_destination", "logs", ["destination_id"])
    op.create_index("idx_logs_status", "logs", ["status"])


def downgrade() -> None:
    op.drop_index("idx_logs_status", table_name="logs")
    op.drop_index("idx_logs_destination", table_name="logs")
    op.drop_index("idx_logs_account_received", table_name="logs")
    op.drop_index(op.f("ix_logs_event_id"), table_name="logs")
    op.drop_table("logs")

    op.drop_index(op.f("ix_destinations_account_id"), table_name="destinations")
    op.drop_table("destinations")

    op.drop_index(op.f("ix_accounts_app_secret_token"), table_name="accounts")
    op.drop_table("accounts")
