"""
Send queue consumer.

State machine per message, with the job lock held:
- job missing or terminal: acknowledge, nothing to do
- PENDING: move to SENDING (counts an attempt) and call the transport
  - accepted: SENDING -> SENT, acknowledge
  - failed with attempts left: SENDING -> PENDING, leave for redelivery
  - failed on the last attempt: SENDING -> FAILED, acknowledge
- SENDING: a previous owner died mid-send, outcome unknown
  - idempotent transport with attempts left: SENDING -> PENDING, then as above
  - otherwise: SENDING -> FAILED flagged for reconciliation, acknowledge
"""

import asyncio
import logging
import time

from mailqueue.config import PipelineConfig
from mailqueue.constants import SPAN_TRANSPORT_SEND, JobStatus, MessageOutcome
from mailqueue.db.locks import LockManager
from mailqueue.db.repository import JobStore
from mailqueue.errors import AmbiguousSendOutcome, TransitionConflict, TransportFailure
from mailqueue.observability.metrics import MetricsCollector
from mailqueue.observability.tracing import get_tracer
from mailqueue.queue.base import MessageQueue
from mailqueue.transport.base import EmailTransport
from mailqueue.types.job import EmailJob, JobMutation, TransportResult
from mailqueue.worker.base import QueueConsumer

logger = logging.getLogger(__name__)


class SendConsumer(QueueConsumer):
    """Consumes send notifications and delivers the email at most once."""

    def __init__(
        self,
        queue: MessageQueue,
        store: JobStore,
        locks: LockManager,
        pipeline: PipelineConfig,
        transport: EmailTransport,
        transport_timeout_seconds: float = 10.0,
        send_interval_seconds: float = 0.5,
        worker_id: str | None = None,
        transition_retry_limit: int = 3,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the send consumer.

        Args:
            transport: Email transport.
            transport_timeout_seconds: Upper bound for one transport call.
            send_interval_seconds: Pause after every transport call (provider rate limit).

        See QueueConsumer for the other arguments.
        """
        super().__init__(
            queue=queue,
            store=store,
            locks=locks,
            pipeline=pipeline,
            worker_id=worker_id,
            transition_retry_limit=transition_retry_limit,
            metrics=metrics,
        )
        self.transport = transport
        self.transport_timeout = transport_timeout_seconds
        self.send_interval = send_interval_seconds

    async def decide(self, job_id: str, owner: str) -> MessageOutcome:
        job = await self.store.get(job_id)

        if job is None:
            logger.warning("Job not found, dropping send message", extra={"job_id": job_id})
            return MessageOutcome.ACKNOWLEDGED

        if job.is_terminal:
            logger.info(
                "Job already finished, nothing to send",
                extra={"job_id": job_id, "status": job.status.value},
            )
            return MessageOutcome.ACKNOWLEDGED

        if job.status == JobStatus.SENDING:
            if not await self._recover_interrupted_send(job):
                return MessageOutcome.ACKNOWLEDGED

        return await self._send(job)

    async def _recover_interrupted_send(self, job: EmailJob) -> bool:
        """
        Resolve a job left in SENDING by a crashed owner.

        Returns:
            True if the job is back in PENDING and may be sent again.
        """
        ambiguous = AmbiguousSendOutcome(job.id)

        if self.transport.idempotent and job.remaining_attempts > 0:
            logger.warning(
                "Retrying interrupted send with idempotent transport",
                extra={"job_id": job.id, "attempt_count": job.attempt_count},
            )
            await self.transition(
                job.id,
                JobStatus.SENDING,
                JobStatus.PENDING,
                JobMutation(last_error=str(ambiguous)),
            )
            self._metrics.record_ambiguous_send("retried")
            return True

        logger.error(
            "Send outcome unknown, marking job for reconciliation",
            extra={
                "job_id": job.id,
                "attempt_count": job.attempt_count,
                "transport_idempotent": self.transport.idempotent,
            },
        )
        await self.transition(
            job.id,
            JobStatus.SENDING,
            JobStatus.FAILED,
            JobMutation(last_error=str(ambiguous), needs_reconciliation=True),
        )
        self._metrics.record_ambiguous_send("failed")
        return False

    async def _send(self, job: EmailJob) -> MessageOutcome:
        await self.transition(
            job.id,
            JobStatus.PENDING,
            JobStatus.SENDING,
            JobMutation(increment_attempts=True),
        )
        attempt = job.attempt_count + 1

        logger.info(
            "Sending email",
            extra={"job_id": job.id, "attempt": attempt, "max_attempts": job.max_attempts},
        )

        # Past this point the transport may have been called. A lost write
        # must never lead to another send in this delivery.
        try:
            result = await self._call_transport(job)
        except TransportFailure as e:
            return await self._settle_failure(job, attempt, str(e))

        try:
            await self.transition(
                job.id,
                JobStatus.SENDING,
                JobStatus.SENT,
                JobMutation(transport_response=result.model_dump(mode="json"), clear_error=True),
            )
        except TransitionConflict as e:
            logger.error(
                "Job changed while sending, leaving message for redelivery",
                extra={"job_id": job.id, "error": str(e)},
            )
            return MessageOutcome.DEFERRED

        logger.info(
            "Email sent",
            extra={"job_id": job.id, "attempt": attempt, "provider_message_id": result.message_id},
        )
        return MessageOutcome.ACKNOWLEDGED

    async def _settle_failure(self, job: EmailJob, attempt: int, error: str) -> MessageOutcome:
        if attempt < job.max_attempts:
            target, outcome = JobStatus.PENDING, MessageOutcome.DEFERRED
        else:
            target, outcome = JobStatus.FAILED, MessageOutcome.ACKNOWLEDGED

        logger.warning(
            "Email send failed",
            extra={
                "job_id": job.id,
                "attempt": attempt,
                "max_attempts": job.max_attempts,
                "next_status": target.value,
                "error": error,
            },
        )

        try:
            await self.transition(
                job.id,
                JobStatus.SENDING,
                target,
                JobMutation(last_error=error),
            )
        except TransitionConflict as e:
            logger.error(
                "Job changed while sending, leaving message for redelivery",
                extra={"job_id": job.id, "error": str(e)},
            )
            return MessageOutcome.DEFERRED
        return outcome

    async def _call_transport(self, job: EmailJob) -> TransportResult:
        start_time = time.time()
        success = False

        try:
            with get_tracer().start_as_current_span(SPAN_TRANSPORT_SEND) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("provider", self.transport.name)
                try:
                    result = await asyncio.wait_for(
                        self.transport.send(job.id, job.payload),
                        timeout=self.transport_timeout,
                    )
                except TimeoutError as e:
                    raise TransportFailure(
                        f"Transport timed out after {self.transport_timeout}s"
                    ) from e
            success = True
            return result
        finally:
            self._metrics.record_transport_send(
                self.transport.name,
                success,
                time.time() - start_time,
            )
            if self.send_interval > 0:
                await asyncio.sleep(self.send_interval)
