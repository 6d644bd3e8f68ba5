"""Initial schema with job, lock and queue message tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Default table names; deployments with custom names edit these
JOB_TABLE = "email_service_single_table"
LOCK_TABLE = "distributed_locks"
MESSAGE_TABLE = "queue_messages"


def upgrade() -> None:
    # Email jobs, one row per job
    op.create_table(
        JOB_TABLE,
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("transport_response", postgresql.JSONB, nullable=True),
        sa.Column("needs_reconciliation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'SENDING', 'SENT', 'CANCELLED', 'FAILED')",
            name=f"ck_{JOB_TABLE}_status",
        ),
    )
    op.create_index(f"ix_{JOB_TABLE}_status", JOB_TABLE, ["status"])

    # Partial index for reconciliation follow-up
    op.execute(f"""
        CREATE INDEX ix_{JOB_TABLE}_reconciliation
        ON {JOB_TABLE} (updated_at)
        WHERE needs_reconciliation
    """)

    # Distributed locks, one row per held (or expired, not yet reclaimed) lock
    op.create_table(
        LOCK_TABLE,
        sa.Column("resource_key", sa.String(255), nullable=False),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("acquired_at", sa.DateTime, nullable=False),
        sa.PrimaryKeyConstraint("resource_key"),
    )
    op.create_index(f"ix_{LOCK_TABLE}_expires_at", LOCK_TABLE, ["expires_at"])

    # Queue messages for every named queue, dead-letter queues included
    op.create_table(
        MESSAGE_TABLE,
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("body", postgresql.JSONB, nullable=False),
        sa.Column("receipt_handle", sa.String(64), nullable=True),
        sa.Column("receive_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("visible_at", sa.DateTime, nullable=False),
        sa.Column("enqueued_at", sa.DateTime, nullable=False),
        sa.Column("source_queue", sa.String(255), nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{MESSAGE_TABLE}_poll", MESSAGE_TABLE, ["queue_name", "visible_at"])


def downgrade() -> None:
    op.drop_index(f"ix_{MESSAGE_TABLE}_poll")
    op.drop_table(MESSAGE_TABLE)

    op.drop_index(f"ix_{LOCK_TABLE}_expires_at")
    op.drop_table(LOCK_TABLE)

    op.execute(f"DROP INDEX IF EXISTS ix_{JOB_TABLE}_reconciliation")
    op.drop_index(f"ix_{JOB_TABLE}_status")
    op.drop_table(JOB_TABLE)
