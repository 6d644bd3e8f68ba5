"""
Queue message definitions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class JobMessage(BaseModel):
    """
    Body of send and cancel notifications.

    Only the job id travels through the queue; the payload is always read
    from the job store so a consumer never acts on stale data.
    """

    job_id: str


@dataclass
class QueueMessage:
    """
    A message handed out by ``receive``.

    The receipt handle identifies this particular delivery; acknowledging
    with an outdated handle is a no-op.
    """

    message_id: str
    queue_name: str
    body: dict[str, Any]
    receipt_handle: str | None
    receive_count: int
    enqueued_at: datetime
    visible_at: datetime
    source_queue: str | None = None
    dead_lettered_at: datetime | None = None

    def job_message(self) -> JobMessage:
        """Parse the body as a job notification."""
        return JobMessage.model_validate(self.body)
