"""
Distributed lock manager backed by the lock table.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.db.connection import session_scope
from mailqueue.db.tables import Tables
from mailqueue.errors import ConfigurationError, StoreUnavailable
from mailqueue.types.job import LockInfo
from mailqueue.utils import utc_now

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert_for(dialect: str):
    try:
        return _UPSERT_DIALECTS[dialect]
    except KeyError:
        raise ConfigurationError(f"Lock table not supported on {dialect}") from None


class LockManager:
    """
    Short-lived exclusive locks keyed by job id.

    Each operation is a single conditional write:
    - acquire: insert, or take over a row whose lock has expired or that
      already belongs to the same owner (refresh)
    - release: delete only if still owned by the caller

    Expired locks are never swept; they are simply treated as free and
    overwritten by the next acquirer.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the lock manager.

        Args:
            session_factory: Factory for database sessions.
            tables: Table definitions to operate on.
            clock: Source of the current (naive UTC) time.
        """
        self._session_factory = session_factory
        self._locks = tables.locks
        self._clock = clock

    async def acquire(self, job_id: str, owner: str, ttl_seconds: float) -> bool:
        """
        Try to take the lock for a job.

        Args:
            job_id: The job id (lock resource key).
            owner: Token identifying the worker instance and attempt.
            ttl_seconds: Lock lifetime.

        Returns:
            True if the caller now holds the lock, False if a live lock
            belongs to someone else. Contention is not an error.
        """
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            upsert = _upsert_for(session.bind.dialect.name)

            stmt = upsert(self._locks).values(
                resource_key=job_id,
                owner=owner,
                expires_at=expires_at,
                acquired_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[self._locks.c.resource_key],
                set_={
                    "owner": stmt.excluded.owner,
                    "expires_at": stmt.excluded.expires_at,
                    "acquired_at": stmt.excluded.acquired_at,
                },
                where=or_(
                    self._locks.c.expires_at <= now,
                    self._locks.c.owner == owner,
                ),
            )
            await session.execute(stmt)

            # Read back inside the same transaction: the row carries our
            # token only if the conditional write took effect.
            holder = await session.scalar(
                select(self._locks.c.owner).where(self._locks.c.resource_key == job_id)
            )
            acquired = holder == owner

        if acquired:
            logger.debug(
                "Acquired lock",
                extra={"job_id": job_id, "owner": owner, "expires_at": expires_at.isoformat()},
            )
        else:
            logger.info("Lock contended", extra={"job_id": job_id, "owner": owner})
        return acquired

    async def release(self, job_id: str, owner: str) -> None:
        """
        Release the lock if the caller still owns it.

        Releasing a lock that expired and was taken over by someone else
        is a no-op.

        Args:
            job_id: The job id.
            owner: The owner token used to acquire.
        """
        stmt = delete(self._locks).where(
            and_(
                self._locks.c.resource_key == job_id,
                self._locks.c.owner == owner,
            )
        )

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            released = result.rowcount > 0

        if released:
            logger.debug("Released lock", extra={"job_id": job_id, "owner": owner})
        else:
            logger.warning(
                "Lock was no longer held at release",
                extra={"job_id": job_id, "owner": owner},
            )

    async def is_held_by_other(self, job_id: str, owner: str) -> bool:
        """
        Check whether a live lock on the job belongs to a different owner.

        Args:
            job_id: The job id.
            owner: The caller's owner token.

        Returns:
            True if someone else holds an unexpired lock.
        """
        lock = await self.get(job_id)
        if lock is None or lock.is_expired(self._clock()):
            return False
        return lock.owner != owner

    async def get(self, job_id: str) -> LockInfo | None:
        """
        Get the lock row for a job, expired or not.

        Args:
            job_id: The job id.

        Returns:
            The LockInfo or None if no row exists.
        """
        stmt = select(self._locks).where(self._locks.c.resource_key == job_id)

        async with session_scope(self._session_factory, StoreUnavailable) as session:
            result = await session.execute(stmt)
            row = result.one_or_none()

        if row is None:
            return None
        return LockInfo(
            resource_key=row.resource_key,
            owner=row.owner,
            expires_at=row.expires_at,
        )
