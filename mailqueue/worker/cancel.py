"""
Cancel queue consumer.

A cancel only wins while the job is still PENDING. Once a send has started
(or finished) the cancel is acknowledged as a no-op.
"""

import logging

from mailqueue.constants import JobStatus, MessageOutcome
from mailqueue.worker.base import QueueConsumer

logger = logging.getLogger(__name__)


class CancelConsumer(QueueConsumer):
    """Consumes cancel notifications."""

    async def decide(self, job_id: str, owner: str) -> MessageOutcome:
        job = await self.store.get(job_id)

        if job is None:
            logger.warning("Job not found, dropping cancel message", extra={"job_id": job_id})
            return MessageOutcome.ACKNOWLEDGED

        if job.status != JobStatus.PENDING:
            logger.info(
                "Job is past cancellation, ignoring cancel",
                extra={"job_id": job_id, "status": job.status.value},
            )
            return MessageOutcome.ACKNOWLEDGED

        await self.transition(job_id, JobStatus.PENDING, JobStatus.CANCELLED)
        logger.info("Email job cancelled", extra={"job_id": job_id})
        return MessageOutcome.ACKNOWLEDGED
