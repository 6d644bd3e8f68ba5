"""
SQLAlchemy table definitions.

Table names are deployment configuration, so the tables are built per
configuration instead of being bound to module-level classes.
"""

from dataclasses import dataclass

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from mailqueue.config import Settings
from mailqueue.constants import JobStatus

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


@dataclass(frozen=True)
class TableNames:
    """Names of the three shared tables."""

    jobs: str = "email_service_single_table"
    locks: str = "distributed_locks"
    messages: str = "queue_messages"

    @classmethod
    def from_settings(cls, settings: Settings) -> "TableNames":
        """Read table names from settings."""
        return cls(
            jobs=settings.job_table_name,
            locks=settings.lock_table_name,
            messages=settings.queue_table_name,
        )


@dataclass(frozen=True)
class Tables:
    """
    Bound table objects handed to every storage component.

    - jobs: one row per email job, keyed by job id, with a status attribute
    - locks: one row per held lock, keyed by resource (job) id, TTL-bounded
    - messages: queue messages for every named queue, including dead-letter queues
    """

    metadata: MetaData
    jobs: Table
    locks: Table
    messages: Table


def build_tables(names: TableNames | None = None) -> Tables:
    """
    Build the table definitions for the given names.

    Args:
        names: Table names. Defaults to the standard names.

    Returns:
        Tables: Table objects sharing one MetaData.
    """
    names = names or TableNames()
    metadata = MetaData()

    jobs = Table(
        names.jobs,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("status", String(16), nullable=False, default=JobStatus.PENDING.value),
        Column("payload", JSONType, nullable=False),
        # Retry tracking
        Column("attempt_count", Integer, nullable=False, default=0),
        Column("max_attempts", Integer, nullable=False),
        # Outcome
        Column("last_error", Text, nullable=True),
        Column("transport_response", JSONType, nullable=True),
        Column("needs_reconciliation", Boolean, nullable=False, default=False),
        # Timestamps (naive UTC)
        Column("created_at", DateTime, nullable=False),
        Column("updated_at", DateTime, nullable=False),
        Column("completed_at", DateTime, nullable=True),
        Index(f"ix_{names.jobs}_status", "status"),
    )

    locks = Table(
        names.locks,
        metadata,
        Column("resource_key", String(255), primary_key=True),
        Column("owner", String(255), nullable=False),
        Column("expires_at", DateTime, nullable=False),
        Column("acquired_at", DateTime, nullable=False),
        Index(f"ix_{names.locks}_expires_at", "expires_at"),
    )

    messages = Table(
        names.messages,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("queue_name", String(255), nullable=False),
        Column("body", JSONType, nullable=False),
        Column("receipt_handle", String(64), nullable=True),
        Column("receive_count", Integer, nullable=False, default=0),
        Column("visible_at", DateTime, nullable=False),
        Column("enqueued_at", DateTime, nullable=False),
        # Dead-letter bookkeeping
        Column("source_queue", String(255), nullable=True),
        Column("dead_lettered_at", DateTime, nullable=True),
        # Index for receive polling
        Index(f"ix_{names.messages}_poll", "queue_name", "visible_at"),
    )

    return Tables(metadata=metadata, jobs=jobs, locks=locks, messages=messages)
