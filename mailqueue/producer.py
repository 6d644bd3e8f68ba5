"""
Producer side of the pipeline: job creation and notifications.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.config import Settings
from mailqueue.constants import (
    CANCEL_PIPELINE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_RECEIVE_COUNT,
    SEND_PIPELINE,
    JobStatus,
)
from mailqueue.db.repository import JobStore
from mailqueue.db.tables import Tables
from mailqueue.queue.base import MessageQueue
from mailqueue.queue.sql import SqlMessageQueue
from mailqueue.types.job import EmailJob, EmailPayload
from mailqueue.types.messages import JobMessage
from mailqueue.utils import new_id, utc_now

logger = logging.getLogger(__name__)


class EmailJobProducer:
    """
    Creates email jobs and enqueues send and cancel notifications.

    The job row is written before the send notification is enqueued, so a
    consumer never receives a notification for a job that does not exist
    yet. A crash between the two leaves a PENDING job that is never sent;
    resubmitting with the same job id reports DuplicateJob.

    Every failed attempt costs one receive of the send notification, so the
    attempt budget may not exceed the send queue's receive limit. A larger
    budget would move the notification to the dead-letter queue while the
    job is still PENDING.
    """

    def __init__(
        self,
        store: JobStore,
        send_queue: MessageQueue,
        cancel_queue: MessageQueue,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._send_queue = send_queue
        self._cancel_queue = cancel_queue
        self._max_receive_count = max_receive_count
        self._default_max_attempts = self._check_max_attempts(default_max_attempts)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Tables,
        settings: Settings,
    ) -> "EmailJobProducer":
        """Build a producer writing to the configured job table and queues."""
        send_pipeline = settings.pipeline(SEND_PIPELINE)
        return cls(
            store=JobStore(session_factory, tables),
            send_queue=SqlMessageQueue.for_pipeline(session_factory, tables, send_pipeline),
            cancel_queue=SqlMessageQueue.for_pipeline(
                session_factory, tables, settings.pipeline(CANCEL_PIPELINE)
            ),
            default_max_attempts=settings.default_max_attempts,
            max_receive_count=send_pipeline.max_receive_count,
        )

    async def submit(
        self,
        payload: EmailPayload | dict[str, Any],
        job_id: str | None = None,
        delay_seconds: float = 0,
        max_attempts: int | None = None,
    ) -> EmailJob:
        """
        Create a PENDING job and enqueue its send notification.

        Args:
            payload: What to send.
            job_id: Caller-chosen id. Generated if not given.
            delay_seconds: Delay before the send notification becomes visible.
            max_attempts: Per-job attempt budget. Defaults to configuration.

        Returns:
            The created job.

        Raises:
            ValidationError: If the payload is malformed.
            ValueError: If max_attempts is below 1 or above the send queue's receive limit.
            DuplicateJob: If a job with the same id exists.
        """
        if max_attempts is None:
            max_attempts = self._default_max_attempts
        else:
            max_attempts = self._check_max_attempts(max_attempts)

        if not isinstance(payload, EmailPayload):
            payload = EmailPayload.model_validate(payload)

        now = self._clock()
        job = EmailJob(
            id=job_id or new_id(),
            status=JobStatus.PENDING,
            payload=payload.model_dump(mode="json", exclude_none=True),
            attempt_count=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
        )

        await self._store.create(job)
        message_id = await self._send_queue.enqueue(
            JobMessage(job_id=job.id).model_dump(),
            delay_seconds=delay_seconds,
        )

        logger.info(
            "Email job submitted",
            extra={
                "job_id": job.id,
                "message_id": message_id,
                "delay_seconds": delay_seconds,
            },
        )
        return job

    async def request_cancel(self, job_id: str, delay_seconds: float = 0) -> str:
        """
        Enqueue a cancel notification.

        Cancellation only takes effect if the job is still PENDING when the
        notification is processed.

        Args:
            job_id: The job to cancel.
            delay_seconds: Delay before the notification becomes visible.

        Returns:
            The message id.
        """
        message_id = await self._cancel_queue.enqueue(
            JobMessage(job_id=job_id).model_dump(),
            delay_seconds=delay_seconds,
        )
        logger.info(
            "Email job cancel requested",
            extra={"job_id": job_id, "message_id": message_id},
        )
        return message_id

    def _check_max_attempts(self, max_attempts: int) -> int:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if max_attempts > self._max_receive_count:
            raise ValueError(
                f"max_attempts {max_attempts} exceeds the send queue receive limit "
                f"{self._max_receive_count}"
            )
        return max_attempts
