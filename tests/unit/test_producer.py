"""
Unit tests for the producer.
"""

import pytest
from pydantic import ValidationError

from mailqueue.constants import JobStatus
from mailqueue.db import JobStore
from mailqueue.errors import DuplicateJob
from mailqueue.producer import EmailJobProducer
from mailqueue.queue import SqlMessageQueue
from mailqueue.types.job import EmailPayload


class TestEmailJobProducer:
    """Tests for EmailJobProducer."""

    async def test_submit_writes_job_then_enqueues(
        self,
        producer: EmailJobProducer,
        store: JobStore,
        send_queue: SqlMessageQueue,
        sample_payload,
    ):
        """Test that submit creates a PENDING job and a send notification."""
        job = await producer.submit(sample_payload)

        stored = await store.get(job.id)
        message = await send_queue.receive()

        assert stored.status == JobStatus.PENDING
        assert stored.max_attempts == 3
        assert stored.payload["to"] == sample_payload["to"]
        assert message.body == {"job_id": job.id}

    async def test_submit_with_job_id_and_budget(
        self,
        producer: EmailJobProducer,
        store: JobStore,
    ):
        """Test caller-supplied id and attempt budget."""
        payload = EmailPayload(to="user@example.com", template_id="welcome")

        job = await producer.submit(payload, job_id="job-42", max_attempts=1)

        assert job.id == "job-42"
        assert (await store.get("job-42")).max_attempts == 1

    async def test_submit_duplicate_id(self, producer: EmailJobProducer, sample_payload):
        """Test that reusing a job id is rejected."""
        await producer.submit(sample_payload, job_id="job-1")

        with pytest.raises(DuplicateJob):
            await producer.submit(sample_payload, job_id="job-1")

    async def test_submit_invalid_payload(
        self,
        producer: EmailJobProducer,
        send_queue: SqlMessageQueue,
    ):
        """Test that an unsendable payload is refused before anything is written."""
        with pytest.raises(ValidationError):
            await producer.submit({"to": "user@example.com"})

        assert await send_queue.depth() == 0

    async def test_delayed_submit(
        self,
        producer: EmailJobProducer,
        send_queue: SqlMessageQueue,
        sample_payload,
        clock,
    ):
        """Test scheduling a send notification in the future."""
        await producer.submit(sample_payload, delay_seconds=300)

        assert await send_queue.receive() is None
        clock.advance(300)
        assert await send_queue.receive() is not None

    async def test_request_cancel(
        self,
        producer: EmailJobProducer,
        cancel_queue: SqlMessageQueue,
    ):
        """Test that a cancel request is a notification on the cancel queue."""
        message_id = await producer.request_cancel("job-1")

        message = await cancel_queue.receive()
        assert message.message_id == message_id
        assert message.body == {"job_id": "job-1"}

    @pytest.mark.parametrize("max_attempts", [0, -2, 4])
    async def test_submit_rejects_attempt_budget_out_of_range(
        self,
        producer: EmailJobProducer,
        store: JobStore,
        send_queue: SqlMessageQueue,
        sample_payload,
        max_attempts: int,
    ):
        """Test that a budget below one or above the send queue's receive limit is refused."""
        with pytest.raises(ValueError, match="max_attempts"):
            await producer.submit(sample_payload, job_id="job-1", max_attempts=max_attempts)

        assert await store.get("job-1") is None
        assert await send_queue.depth() == 0

    async def test_submit_accepts_budget_at_receive_limit(
        self,
        producer: EmailJobProducer,
        store: JobStore,
        sample_payload,
    ):
        """Test that the budget may use every receive of the notification."""
        await producer.submit(sample_payload, job_id="job-1", max_attempts=3)

        assert (await store.get("job-1")).max_attempts == 3

    async def test_default_budget_above_receive_limit(self, store, send_queue, cancel_queue):
        """Test that the default budget is checked when the producer is built."""
        with pytest.raises(ValueError, match="receive limit"):
            EmailJobProducer(
                store,
                send_queue,
                cancel_queue,
                default_max_attempts=5,
                max_receive_count=3,
            )

    async def test_from_settings_uses_queue_receive_limit(
        self,
        session_factory,
        tables,
        test_settings,
        sample_payload,
    ):
        """Test that a settings-built producer takes its limits from the send pipeline."""
        producer = EmailJobProducer.from_settings(session_factory, tables, test_settings)

        job = await producer.submit(sample_payload)
        assert job.max_attempts == test_settings.default_max_attempts

        with pytest.raises(ValueError):
            await producer.submit(
                sample_payload,
                max_attempts=test_settings.queue_max_receive_count + 1,
            )
