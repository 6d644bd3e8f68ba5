"""
Message queue stored in the shared database.

Every named queue (including dead-letter queues) lives in the same message
table, distinguished by ``queue_name``.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.config import PipelineConfig
from mailqueue.constants import DEFAULT_MAX_RECEIVE_COUNT
from mailqueue.db.connection import session_scope
from mailqueue.db.tables import Tables
from mailqueue.errors import QueueUnavailable
from mailqueue.types.messages import QueueMessage
from mailqueue.utils import new_id, utc_now

logger = logging.getLogger(__name__)

# Candidate rows inspected per receive before giving up for this poll
_MAX_CLAIM_ROUNDS = 10


class SqlMessageQueue:
    """
    One named queue on the message table.

    Semantics:
    - receive hands out the oldest visible message and hides it for the
      visibility timeout, incrementing its receive count
    - acknowledge deletes the message, only for the latest receipt handle
    - a message already received ``max_receive_count`` times is moved to the
      dead-letter queue instead of being delivered again; its body is kept
      as-is
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        queue_name: str,
        dead_letter_queue_name: str | None = None,
        visibility_timeout_seconds: float = 180.0,
        max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
        poll_interval_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the queue.

        Args:
            session_factory: Factory for database sessions.
            tables: Table definitions to operate on.
            queue_name: Name of this queue.
            dead_letter_queue_name: Where poison messages go. None disables redrive.
            visibility_timeout_seconds: How long a received message stays hidden.
            max_receive_count: Receives allowed before redrive.
            poll_interval_seconds: Sleep between polls while waiting in receive.
            clock: Source of the current (naive UTC) time.
        """
        self.queue_name = queue_name
        self.dead_letter_queue_name = dead_letter_queue_name
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self.max_receive_count = max_receive_count
        self.poll_interval = poll_interval_seconds
        self._session_factory = session_factory
        self._messages = tables.messages
        self._clock = clock

    @classmethod
    def for_pipeline(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        pipeline: PipelineConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> "SqlMessageQueue":
        """Build the source queue of a pipeline."""
        return cls(
            session_factory,
            tables,
            queue_name=pipeline.queue_name,
            dead_letter_queue_name=pipeline.dead_letter_queue_name,
            visibility_timeout_seconds=pipeline.visibility_timeout_seconds,
            max_receive_count=pipeline.max_receive_count,
            poll_interval_seconds=pipeline.poll_interval_seconds,
            clock=clock,
        )

    async def enqueue(self, body: dict[str, Any], delay_seconds: float = 0) -> str:
        """
        Add a message to the queue.

        Args:
            body: JSON-serializable message body.
            delay_seconds: Keep the message invisible for this long first.

        Returns:
            The message id.
        """
        now = self._clock()
        message_id = new_id()
        stmt = insert(self._messages).values(
            id=message_id,
            queue_name=self.queue_name,
            body=body,
            receipt_handle=None,
            receive_count=0,
            visible_at=now + timedelta(seconds=max(0.0, delay_seconds)),
            enqueued_at=now,
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            await session.execute(stmt)

        logger.info(
            "Enqueued message",
            extra={
                "queue": self.queue_name,
                "message_id": message_id,
                "delay_seconds": delay_seconds,
            },
        )
        return message_id

    async def receive(self, wait_seconds: float | None = None) -> QueueMessage | None:
        """
        Wait for the next visible message.

        Args:
            wait_seconds: Long-poll duration. 0 or None polls once.

        Returns:
            The received message, or None if nothing became visible in time.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (wait_seconds or 0)

        while True:
            message = await self._receive_once()
            if message is not None:
                return message
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _receive_once(self) -> QueueMessage | None:
        async with session_scope(self._session_factory, QueueUnavailable) as session:
            for _ in range(_MAX_CLAIM_ROUNDS):
                now = self._clock()
                candidate = (
                    await session.execute(
                        select(self._messages)
                        .where(
                            and_(
                                self._messages.c.queue_name == self.queue_name,
                                self._messages.c.visible_at <= now,
                            )
                        )
                        .order_by(self._messages.c.visible_at, self._messages.c.enqueued_at)
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                ).one_or_none()

                if candidate is None:
                    return None

                # Guard every claim on the observed state so concurrent
                # receivers cannot both take the same delivery.
                claimed_where = and_(
                    self._messages.c.id == candidate.id,
                    self._messages.c.queue_name == self.queue_name,
                    self._messages.c.receive_count == candidate.receive_count,
                    self._messages.c.visible_at <= now,
                )

                if (
                    self.dead_letter_queue_name is not None
                    and candidate.receive_count >= self.max_receive_count
                ):
                    result = await session.execute(
                        update(self._messages)
                        .where(claimed_where)
                        .values(
                            queue_name=self.dead_letter_queue_name,
                            source_queue=self.queue_name,
                            dead_lettered_at=now,
                            receipt_handle=None,
                            visible_at=now,
                        )
                    )
                    if result.rowcount > 0:
                        logger.warning(
                            "Message moved to dead-letter queue",
                            extra={
                                "queue": self.queue_name,
                                "dead_letter_queue": self.dead_letter_queue_name,
                                "message_id": candidate.id,
                                "receive_count": candidate.receive_count,
                            },
                        )
                    continue

                receipt_handle = new_id()
                visible_at = now + self.visibility_timeout
                result = await session.execute(
                    update(self._messages)
                    .where(claimed_where)
                    .values(
                        receive_count=candidate.receive_count + 1,
                        receipt_handle=receipt_handle,
                        visible_at=visible_at,
                    )
                )
                if result.rowcount == 0:
                    continue

                message = _message_from_row(candidate)
                message.receipt_handle = receipt_handle
                message.receive_count = candidate.receive_count + 1
                message.visible_at = visible_at

                logger.debug(
                    "Received message",
                    extra={
                        "queue": self.queue_name,
                        "message_id": message.message_id,
                        "receive_count": message.receive_count,
                    },
                )
                return message

        return None

    async def acknowledge(self, message: QueueMessage) -> bool:
        """
        Delete a received message.

        Args:
            message: The message as returned by ``receive``.

        Returns:
            True if the message was deleted, False if the receipt handle is
            stale (the message was redelivered or already deleted).
        """
        stmt = delete(self._messages).where(
            and_(
                self._messages.c.id == message.message_id,
                self._messages.c.queue_name == self.queue_name,
                self._messages.c.receipt_handle == message.receipt_handle,
            )
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            result = await session.execute(stmt)
            deleted = result.rowcount > 0

        if deleted:
            logger.debug(
                "Acknowledged message",
                extra={"queue": self.queue_name, "message_id": message.message_id},
            )
        else:
            logger.warning(
                "Acknowledge with stale receipt handle ignored",
                extra={"queue": self.queue_name, "message_id": message.message_id},
            )
        return deleted

    async def depth(self) -> int:
        """
        Count messages in the queue, visible or in flight.

        Returns:
            Number of messages.
        """
        stmt = (
            select(func.count())
            .select_from(self._messages)
            .where(self._messages.c.queue_name == self.queue_name)
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            return (await session.scalar(stmt)) or 0

    async def peek(self, limit: int = 50) -> list[QueueMessage]:
        """
        List messages without receiving them, oldest first.

        Args:
            limit: Maximum number of messages to return.

        Returns:
            List of messages. Receipt handles are not issued.
        """
        stmt = (
            select(self._messages)
            .where(self._messages.c.queue_name == self.queue_name)
            .order_by(self._messages.c.enqueued_at)
            .limit(limit)
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            rows = (await session.execute(stmt)).all()

        return [_message_from_row(row) for row in rows]

    async def get(self, message_id: str) -> QueueMessage | None:
        """
        Get a message of this queue by id without receiving it.

        Args:
            message_id: The message id.

        Returns:
            The message or None if it is not in this queue.
        """
        stmt = select(self._messages).where(
            and_(
                self._messages.c.id == message_id,
                self._messages.c.queue_name == self.queue_name,
            )
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            row = (await session.execute(stmt)).one_or_none()

        return _message_from_row(row) if row is not None else None

    async def move(self, message_id: str, target_queue: str) -> bool:
        """
        Move a message to another queue as a fresh, immediately visible message.

        Used to replay quarantined messages. The body is not modified.

        Args:
            message_id: The message id.
            target_queue: Destination queue name.

        Returns:
            True if the message was moved, False if it is not in this queue.
        """
        now = self._clock()
        stmt = (
            update(self._messages)
            .where(
                and_(
                    self._messages.c.id == message_id,
                    self._messages.c.queue_name == self.queue_name,
                )
            )
            .values(
                queue_name=target_queue,
                receive_count=0,
                receipt_handle=None,
                visible_at=now,
                source_queue=None,
                dead_lettered_at=None,
            )
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            result = await session.execute(stmt)
            moved = result.rowcount > 0

        if moved:
            logger.info(
                "Moved message",
                extra={"message_id": message_id, "from_queue": self.queue_name, "to_queue": target_queue},
            )
        return moved

    async def discard(self, message_id: str) -> bool:
        """
        Delete a message regardless of receipt handle.

        Args:
            message_id: The message id.

        Returns:
            True if the message was deleted.
        """
        stmt = delete(self._messages).where(
            and_(
                self._messages.c.id == message_id,
                self._messages.c.queue_name == self.queue_name,
            )
        )

        async with session_scope(self._session_factory, QueueUnavailable) as session:
            result = await session.execute(stmt)
            discarded = result.rowcount > 0

        if discarded:
            logger.info(
                "Discarded message",
                extra={"queue": self.queue_name, "message_id": message_id},
            )
        return discarded


def _message_from_row(row: Row) -> QueueMessage:
    return QueueMessage(
        message_id=row.id,
        queue_name=row.queue_name,
        body=row.body,
        receipt_handle=row.receipt_handle,
        receive_count=row.receive_count,
        enqueued_at=row.enqueued_at,
        visible_at=row.visible_at,
        source_queue=row.source_queue,
        dead_lettered_at=row.dead_lettered_at,
    )
