"""
Job store for email job records.
Implements the core data access patterns for job management.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.constants import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, JobStatus
from mailqueue.db.connection import session_scope
from mailqueue.db.tables import Tables
from mailqueue.errors import DuplicateJob, InvalidTransition, StoreUnavailable
from mailqueue.types.job import EmailJob, JobMutation
from mailqueue.utils import utc_now

logger = logging.getLogger(__name__)


class JobStore:
    """
    Durable record of email jobs and their status transitions.

    Implements atomic operations for:
    - Job creation, rejecting duplicate ids
    - Conditional status transitions (compare-and-set on status)
    - Status listing and counts for operators

    The store performs no locking of its own. Callers must hold the job's
    lock from the LockManager before calling ``transition``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory for database sessions.
            tables: Table definitions to operate on.
            clock: Source of the current (naive UTC) time.
        """
        self._session_factory = session_factory
        self._jobs = tables.jobs
        self._locks = tables.locks
        self._clock = clock

    async def create(self, job: EmailJob) -> str:
        """
        Insert a new job.

        Args:
            job: The job to persist. Its status should be PENDING.

        Returns:
            The job id.

        Raises:
            DuplicateJob: If a job with the same id already exists.
            StoreUnavailable: If the database cannot be reached.
        """
        stmt = insert(self._jobs).values(
            id=job.id,
            status=job.status.value,
            payload=job.payload,
            attempt_count=job.attempt_count,
            max_attempts=job.max_attempts,
            last_error=job.last_error,
            transport_response=job.transport_response,
            needs_reconciliation=job.needs_reconciliation,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )

        try:
            async with session_scope(self._session_factory, StoreUnavailable) as session:
                await session.execute(stmt)
        except IntegrityError as e:
            raise DuplicateJob(job.id) from e

        logger.info(
            "Created job",
            extra={"job_id": job.id, "status": job.status.value},
        )
        return job.id

    async def get(self, job_id: str) -> EmailJob | None:
        """
        Get a job by id.

        ``lock_token`` is filled from the lock table when a live lock exists.

        Args:
            job_id: The job id.

        Returns:
            The EmailJob or None if not found.
        """
        now = self._clock()
        stmt = (
            select(self._jobs, self._locks.c.owner.label("lock_token"))
            .select_from(
                self._jobs.outerjoin(
                    self._locks,
                    and_(
                        self._locks.c.resource_key == self._jobs.c.id,
                        self._locks.c.expires_at > now,
                    ),
                )
            )
            .where(self._jobs.c.id == job_id)
        )

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            row = result.one_or_none()

        return _job_from_row(row) if row is not None else None

    async def transition(
        self,
        job_id: str,
        expected_status: JobStatus,
        new_status: JobStatus,
        mutation: JobMutation | None = None,
    ) -> bool:
        """
        Move a job from one status to another.

        Conditional update: succeeds only if the stored status still equals
        ``expected_status`` at write time.

        Args:
            job_id: The job id.
            expected_status: Status the caller observed.
            new_status: Status to move to.
            mutation: Extra field changes written in the same update.

        Returns:
            True if the job was updated, False if another actor moved it first
            (or it does not exist). Callers should re-read and re-decide.

        Raises:
            InvalidTransition: If the edge is not in the transition graph.
        """
        if new_status not in ALLOWED_TRANSITIONS[expected_status]:
            raise InvalidTransition(job_id, expected_status.value, new_status.value)

        now = self._clock()
        values: dict[str, Any] = {
            "status": new_status.value,
            "updated_at": now,
        }
        if new_status in TERMINAL_STATUSES:
            values["completed_at"] = now

        if mutation is not None:
            if mutation.increment_attempts:
                values["attempt_count"] = self._jobs.c.attempt_count + 1
            if mutation.clear_error:
                values["last_error"] = None
            elif mutation.last_error is not None:
                values["last_error"] = mutation.last_error
            if mutation.transport_response is not None:
                values["transport_response"] = mutation.transport_response
            if mutation.needs_reconciliation is not None:
                values["needs_reconciliation"] = mutation.needs_reconciliation

        stmt = (
            update(self._jobs)
            .where(
                and_(
                    self._jobs.c.id == job_id,
                    self._jobs.c.status == expected_status.value,
                )
            )
            .values(**values)
        )

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            updated = result.rowcount > 0

        if updated:
            logger.info(
                "Job transitioned",
                extra={
                    "job_id": job_id,
                    "from_status": expected_status.value,
                    "to_status": new_status.value,
                },
            )
        else:
            logger.info(
                "Job transition lost the race",
                extra={
                    "job_id": job_id,
                    "from_status": expected_status.value,
                    "to_status": new_status.value,
                },
            )
        return updated

    async def list_by_status(
        self,
        status: JobStatus,
        limit: int = 50,
    ) -> list[EmailJob]:
        """
        List jobs in a status, most recently updated first.

        Args:
            status: Status filter.
            limit: Maximum number of jobs to return.

        Returns:
            List of jobs.
        """
        stmt = (
            select(self._jobs)
            .where(self._jobs.c.status == status.value)
            .order_by(self._jobs.c.updated_at.desc())
            .limit(limit)
        )

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [_job_from_row(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """
        Get job counts by status.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(self._jobs.c.status, func.count()).group_by(self._jobs.c.status)

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            return {status: count for status, count in result.all()}


def _job_from_row(row: Row) -> EmailJob:
    data = row._mapping
    return EmailJob(
        id=data["id"],
        status=JobStatus(data["status"]),
        payload=data["payload"],
        attempt_count=data["attempt_count"],
        max_attempts=data["max_attempts"],
        lock_token=data.get("lock_token"),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        completed_at=data["completed_at"],
        last_error=data["last_error"],
        transport_response=data["transport_response"],
        needs_reconciliation=bool(data["needs_reconciliation"]),
    )
