"""
Shared consumer loop for the send and cancel queues.

A consumer processes one message at a time:
1. Acquire the job lock (owner = worker, message and delivery)
2. Re-read the job and decide (subclass)
3. Apply the decision as conditional status writes
4. Release the lock, then acknowledge or leave the message for redelivery
"""

import asyncio
import logging
import os

from pydantic import ValidationError

from mailqueue.config import PipelineConfig
from mailqueue.constants import SPAN_PROCESS_MESSAGE, JobStatus, MessageOutcome
from mailqueue.db.locks import LockManager
from mailqueue.db.repository import JobStore
from mailqueue.errors import (
    LockContended,
    QueueUnavailable,
    StoreUnavailable,
    TransitionConflict,
)
from mailqueue.observability.logging import bind_context, clear_context
from mailqueue.observability.metrics import MetricsCollector, get_metrics
from mailqueue.observability.tracing import get_tracer
from mailqueue.queue.base import MessageQueue
from mailqueue.types.job import JobMutation
from mailqueue.types.messages import QueueMessage

logger = logging.getLogger(__name__)


class QueueConsumer:
    """
    Single-concurrency consumer of one pipeline's queue.

    Features:
    - One in-flight message per consumer
    - Lock-guarded read-decide-write on the job
    - Bounded re-read/re-decide on lost conditional writes
    - Every message ends as ACKNOWLEDGED or DEFERRED; no exception escapes
    - Graceful shutdown on SIGTERM/SIGINT (the current message finishes)
    """

    def __init__(
        self,
        queue: MessageQueue,
        store: JobStore,
        locks: LockManager,
        pipeline: PipelineConfig,
        worker_id: str | None = None,
        transition_retry_limit: int = 3,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the consumer.

        Args:
            queue: The queue to consume.
            store: Job store.
            locks: Lock manager.
            pipeline: Validated pipeline configuration.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            transition_retry_limit: Re-decide rounds after a lost conditional write.
            metrics: Metrics collector. Defaults to the process-wide collector.
        """
        self.queue = queue
        self.store = store
        self.locks = locks
        self.pipeline = pipeline.validate()
        self.worker_id = worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.transition_retry_limit = transition_retry_limit
        self._metrics = metrics or get_metrics()
        self._running = False

    async def start(self) -> None:
        """Start the consumer loop."""
        logger.info(
            "Consumer starting",
            extra={
                "worker_id": self.worker_id,
                "pipeline": self.pipeline.name,
                "queue": self.pipeline.queue_name,
            },
        )

        self._running = True

        while self._running:
            try:
                await self.run_once(wait_seconds=self.pipeline.receive_wait_seconds)
            except QueueUnavailable as e:
                logger.warning(
                    "Queue unavailable, backing off",
                    extra={"worker_id": self.worker_id, "error": str(e)},
                )
                await asyncio.sleep(self.pipeline.poll_interval_seconds)
            except Exception as e:
                logger.exception(
                    f"Error in consumer loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await asyncio.sleep(self.pipeline.poll_interval_seconds)

        logger.info(
            "Consumer stopped",
            extra={"worker_id": self.worker_id, "pipeline": self.pipeline.name},
        )

    async def stop(self) -> None:
        """Stop the consumer after the current message."""
        logger.info("Consumer stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def run_once(self, wait_seconds: float | None = 0) -> MessageOutcome | None:
        """
        Receive and handle at most one message.

        Args:
            wait_seconds: Long-poll duration for the receive.

        Returns:
            The outcome, or None if no message was available.
        """
        message = await self.queue.receive(wait_seconds=wait_seconds)
        if message is None:
            return None
        return await self.handle(message)

    async def handle(self, message: QueueMessage) -> MessageOutcome:
        """
        Process one message and settle it with the queue.

        Args:
            message: The received message.

        Returns:
            The outcome applied to the message.
        """
        self._metrics.record_message_received(self.queue.queue_name)
        bind_context(
            pipeline=self.pipeline.name,
            message_id=message.message_id,
            receive_count=message.receive_count,
        )

        try:
            with get_tracer().start_as_current_span(SPAN_PROCESS_MESSAGE) as span:
                span.set_attribute("pipeline", self.pipeline.name)
                span.set_attribute("message_id", message.message_id)
                span.set_attribute("receive_count", message.receive_count)

                try:
                    outcome = await self.process(message)
                except Exception as e:
                    logger.exception(
                        "Unexpected error processing message",
                        extra={"message_id": message.message_id, "error": str(e)},
                    )
                    outcome = MessageOutcome.DEFERRED

                span.set_attribute("outcome", outcome.value)

            if outcome == MessageOutcome.ACKNOWLEDGED:
                try:
                    await self.queue.acknowledge(message)
                except QueueUnavailable as e:
                    # The message is redelivered and re-decided as a no-op
                    logger.warning(
                        "Failed to acknowledge message",
                        extra={"message_id": message.message_id, "error": str(e)},
                    )

            self._metrics.record_message_processed(self.queue.queue_name, outcome.value)
            logger.info(
                "Message processed",
                extra={"message_id": message.message_id, "outcome": outcome.value},
            )
            return outcome
        finally:
            clear_context()

    async def process(self, message: QueueMessage) -> MessageOutcome:
        """
        Run the lock-guarded decision for one message.

        Args:
            message: The received message.

        Returns:
            ACKNOWLEDGED or DEFERRED.
        """
        try:
            job_id = message.job_message().job_id
        except ValidationError as e:
            # Left for redelivery so it ends up in the dead-letter queue
            logger.error(
                "Malformed message body",
                extra={"message_id": message.message_id, "error": str(e)},
            )
            return MessageOutcome.DEFERRED

        bind_context(job_id=job_id)
        owner = self.owner_token(message)

        try:
            acquired = await self.locks.acquire(job_id, owner, self.pipeline.lock_ttl_seconds)
        except StoreUnavailable as e:
            logger.warning(
                "Lock table unavailable",
                extra={"job_id": job_id, "error": str(e)},
            )
            return MessageOutcome.DEFERRED

        self._metrics.record_lock_acquisition(self.pipeline.name, acquired)
        if not acquired:
            logger.info(str(LockContended(job_id)), extra={"job_id": job_id})
            return MessageOutcome.DEFERRED

        try:
            return await asyncio.wait_for(
                self._decide_with_retries(job_id, owner),
                timeout=self.pipeline.max_processing_seconds,
            )
        except TimeoutError:
            logger.error(
                "Message processing exceeded the time limit",
                extra={
                    "job_id": job_id,
                    "max_processing_seconds": self.pipeline.max_processing_seconds,
                },
            )
            return MessageOutcome.DEFERRED
        except StoreUnavailable as e:
            logger.warning(
                "Job store unavailable",
                extra={"job_id": job_id, "error": str(e)},
            )
            return MessageOutcome.DEFERRED
        finally:
            await self._release(job_id, owner)

    async def _decide_with_retries(self, job_id: str, owner: str) -> MessageOutcome:
        for attempt in range(1, self.transition_retry_limit + 1):
            try:
                return await self.decide(job_id, owner)
            except TransitionConflict as e:
                logger.info(
                    "Re-reading job after conflict",
                    extra={"job_id": job_id, "round": attempt, "error": str(e)},
                )

        logger.warning(
            "Giving up after repeated transition conflicts",
            extra={"job_id": job_id, "rounds": self.transition_retry_limit},
        )
        return MessageOutcome.DEFERRED

    async def decide(self, job_id: str, owner: str) -> MessageOutcome:
        """
        Read the job and apply this pipeline's state machine.

        Called with the job lock held. Raising TransitionConflict makes the
        caller re-read and decide again.
        """
        raise NotImplementedError

    async def transition(
        self,
        job_id: str,
        expected: JobStatus,
        new: JobStatus,
        mutation: JobMutation | None = None,
    ) -> None:
        """
        Apply a conditional status write.

        Raises:
            TransitionConflict: If the job was no longer in ``expected``.
        """
        if not await self.store.transition(job_id, expected, new, mutation):
            raise TransitionConflict(job_id, f"expected {expected.value}")
        self._metrics.record_transition(expected.value, new.value)

    def owner_token(self, message: QueueMessage) -> str:
        """Lock owner token for one delivery of a message."""
        return f"{self.worker_id}:{message.message_id}:{message.receive_count}"

    async def _release(self, job_id: str, owner: str) -> None:
        try:
            await self.locks.release(job_id, owner)
        except StoreUnavailable as e:
            # The lock expires on its own
            logger.warning(
                "Failed to release lock",
                extra={"job_id": job_id, "owner": owner, "error": str(e)},
            )
