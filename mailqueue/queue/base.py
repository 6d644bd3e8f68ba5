"""
Queue contract consumed by the producer and the consumers.
"""

from typing import Any, Protocol

from mailqueue.types.messages import QueueMessage


class MessageQueue(Protocol):
    """
    At-least-once message queue with visibility timeout.

    A received message stays invisible for the visibility timeout; if it is
    not acknowledged in that window it is delivered again. After too many
    unacknowledged receives it is moved to the queue's dead-letter queue.
    """

    queue_name: str

    async def enqueue(self, body: dict[str, Any], delay_seconds: float = 0) -> str:
        """Add a message; returns its id."""
        ...

    async def receive(self, wait_seconds: float | None = None) -> QueueMessage | None:
        """Wait up to ``wait_seconds`` for the next visible message."""
        ...

    async def acknowledge(self, message: QueueMessage) -> bool:
        """Remove a received message from the queue."""
        ...
