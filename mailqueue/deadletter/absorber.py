"""
Dead-letter absorber: inspection and manual replay of quarantined messages.

Messages land here when the source queue redrives them after too many
unacknowledged receives. Nothing here reprocesses them automatically.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.config import Settings
from mailqueue.db.tables import Tables
from mailqueue.errors import ConfigurationError
from mailqueue.queue.sql import SqlMessageQueue
from mailqueue.types.messages import QueueMessage
from mailqueue.utils import utc_now

logger = logging.getLogger(__name__)


class DeadLetterAbsorber:
    """
    Operator view over the dead-letter queues.

    Operations:
    - list quarantined messages with their original bodies
    - count messages per dead-letter queue
    - replay a message to the queue it came from, with a fresh receive count
    - discard a message
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        dead_letter_queues: dict[str, str],
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the absorber.

        Args:
            session_factory: Factory for database sessions.
            tables: Table definitions.
            dead_letter_queues: Mapping of dead-letter queue -> source queue.
            clock: Source of the current (naive UTC) time.
        """
        self._sources = dict(dead_letter_queues)
        self._queues = {
            name: SqlMessageQueue(session_factory, tables, queue_name=name, clock=clock)
            for name in self._sources
        }

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        settings: Settings,
    ) -> "DeadLetterAbsorber":
        """Build an absorber over every configured dead-letter queue."""
        return cls(session_factory, tables, settings.dead_letter_queues())

    @property
    def queue_names(self) -> list[str]:
        """Names of the dead-letter queues."""
        return list(self._queues)

    def _queue(self, name: str) -> SqlMessageQueue:
        try:
            return self._queues[name]
        except KeyError:
            raise ConfigurationError(f"Unknown dead-letter queue: {name}") from None

    async def list_messages(self, queue_name: str, limit: int = 50) -> list[QueueMessage]:
        """
        List quarantined messages, oldest first.

        Args:
            queue_name: Dead-letter queue name.
            limit: Maximum number of messages.

        Returns:
            List of messages.
        """
        return await self._queue(queue_name).peek(limit=limit)

    async def counts(self) -> dict[str, int]:
        """
        Count messages in every dead-letter queue.

        Returns:
            Dictionary of queue name -> depth.
        """
        return {name: await queue.depth() for name, queue in self._queues.items()}

    async def replay(self, queue_name: str, message_id: str) -> bool:
        """
        Send a quarantined message back to its source queue.

        The body is unchanged; the receive count starts over.

        Args:
            queue_name: Dead-letter queue name.
            message_id: The message id.

        Returns:
            True if the message was replayed, False if it was not found.
        """
        queue = self._queue(queue_name)
        message = await queue.get(message_id)
        if message is None:
            return False

        target = message.source_queue or self._sources[queue_name]
        replayed = await queue.move(message_id, target)
        if replayed:
            logger.info(
                "Replayed dead-lettered message",
                extra={"message_id": message_id, "dead_letter_queue": queue_name, "queue": target},
            )
        return replayed

    async def replay_all(self, queue_name: str, limit: int = 100) -> int:
        """
        Replay up to ``limit`` messages of a dead-letter queue.

        Returns:
            Number of messages replayed.
        """
        replayed = 0
        for message in await self.list_messages(queue_name, limit=limit):
            if await self.replay(queue_name, message.message_id):
                replayed += 1
        return replayed

    async def discard(self, queue_name: str, message_id: str) -> bool:
        """
        Delete a quarantined message.

        Args:
            queue_name: Dead-letter queue name.
            message_id: The message id.

        Returns:
            True if the message was deleted.
        """
        return await self._queue(queue_name).discard(message_id)
