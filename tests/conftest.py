"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mailqueue.config import Settings
from mailqueue.constants import CANCEL_PIPELINE, SEND_PIPELINE, JobStatus
from mailqueue.db import JobStore, LockManager, Tables, build_tables, create_schema, create_session_factory
from mailqueue.db.connection import get_test_engine
from mailqueue.errors import TransportFailure
from mailqueue.observability.metrics import MetricsCollector
from mailqueue.producer import EmailJobProducer
from mailqueue.queue import SqlMessageQueue
from mailqueue.types.job import EmailJob, TransportResult
from mailqueue.worker import CancelConsumer, SendConsumer

# In-memory SQLite by default; point at PostgreSQL to run against the real thing
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


class FakeClock:
    """Controllable naive-UTC clock shared by all storage components."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingTransport:
    """
    Email transport double.

    Records every call. The first ``failures`` calls raise TransportFailure.
    ``on_send`` runs inside the call, while the sender still holds the job lock.
    """

    name = "recording"

    def __init__(
        self,
        idempotent: bool = False,
        failures: int = 0,
        on_send: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.idempotent = idempotent
        self.failures = failures
        self.on_send = on_send
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def send(self, job_id: str, payload: dict[str, Any]) -> TransportResult:
        self.calls.append((job_id, payload))
        if self.on_send is not None:
            await self.on_send(job_id)
        if len(self.calls) <= self.failures:
            raise TransportFailure("provider unavailable", status_code=503)
        return TransportResult(
            provider=self.name,
            message_id=f"msg-{len(self.calls)}",
            response={"id": f"msg-{len(self.calls)}"},
        )

    async def aclose(self) -> None:
        return None

    def sent_job_ids(self) -> list[str]:
        return [job_id for job_id, _ in self.calls]


@pytest.fixture(scope="session")
def database_url() -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings with short, still valid, timings."""
    return Settings(
        database_url=database_url,
        log_level="DEBUG",
        log_format="console",
        queue_visibility_timeout_seconds=60,
        queue_receive_wait_seconds=0,
        queue_poll_interval_seconds=0.01,
        consumer_max_processing_seconds=10,
        lock_ttl_seconds=15,
        transport_timeout_seconds=2,
        send_interval_seconds=0,
        worker_id="test-worker",
    )


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def tables() -> Tables:
    """Build table definitions with the default names."""
    return build_tables()


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine for tests."""
    engine = get_test_engine(database_url)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    async_engine: AsyncEngine,
    tables: Tables,
) -> async_sessionmaker[AsyncSession]:
    """Create the schema and a session factory on a clean database."""
    await create_schema(async_engine, tables)
    factory = create_session_factory(async_engine)

    # Clean up test data before each test to ensure clean state
    async with factory() as session:
        for table in (tables.messages, tables.locks, tables.jobs):
            await session.execute(delete(table))
        await session.commit()

    return factory


@pytest.fixture
def registry() -> CollectorRegistry:
    """Create a private Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    """Create a metrics collector on the private registry."""
    return MetricsCollector(registry)


@pytest.fixture
def store(session_factory, tables, clock) -> JobStore:
    """Create a job store."""
    return JobStore(session_factory, tables, clock=clock)


@pytest.fixture
def locks(session_factory, tables, clock) -> LockManager:
    """Create a lock manager."""
    return LockManager(session_factory, tables, clock=clock)


@pytest.fixture
def send_queue(session_factory, tables, clock, test_settings) -> SqlMessageQueue:
    """Create the send queue."""
    return SqlMessageQueue.for_pipeline(
        session_factory, tables, test_settings.pipeline(SEND_PIPELINE), clock=clock
    )


@pytest.fixture
def cancel_queue(session_factory, tables, clock, test_settings) -> SqlMessageQueue:
    """Create the cancel queue."""
    return SqlMessageQueue.for_pipeline(
        session_factory, tables, test_settings.pipeline(CANCEL_PIPELINE), clock=clock
    )


@pytest.fixture
def send_dead_letter_queue(session_factory, tables, clock, test_settings) -> SqlMessageQueue:
    """Create a view of the send dead-letter queue."""
    return SqlMessageQueue(
        session_factory,
        tables,
        queue_name=test_settings.send_dead_letter_queue_name,
        clock=clock,
    )


@pytest.fixture
def transport() -> RecordingTransport:
    """Create a recording, non-idempotent transport."""
    return RecordingTransport()


@pytest.fixture
def producer(store, send_queue, cancel_queue, clock, test_settings) -> EmailJobProducer:
    """Create a producer."""
    return EmailJobProducer(
        store,
        send_queue,
        cancel_queue,
        default_max_attempts=test_settings.default_max_attempts,
        max_receive_count=test_settings.queue_max_receive_count,
        clock=clock,
    )


@pytest.fixture
def make_send_consumer(send_queue, store, locks, test_settings, metrics):
    """Factory for send consumers with a given transport and lock manager."""

    def factory(transport, lock_manager=None, **overrides) -> SendConsumer:
        options = {
            "transport_timeout_seconds": test_settings.transport_timeout_seconds,
            "send_interval_seconds": 0,
            "worker_id": "send-worker",
            "transition_retry_limit": test_settings.transition_retry_limit,
        }
        options.update(overrides)
        return SendConsumer(
            queue=options.pop("queue", send_queue),
            store=options.pop("store", store),
            locks=lock_manager or locks,
            pipeline=test_settings.pipeline(SEND_PIPELINE),
            transport=transport,
            metrics=metrics,
            **options,
        )

    return factory


@pytest.fixture
def send_consumer(make_send_consumer, transport) -> SendConsumer:
    """Create a send consumer on the recording transport."""
    return make_send_consumer(transport)


@pytest.fixture
def make_cancel_consumer(cancel_queue, store, locks, test_settings, metrics):
    """Factory for cancel consumers with a given lock manager."""

    def factory(lock_manager=None) -> CancelConsumer:
        return CancelConsumer(
            queue=cancel_queue,
            store=store,
            locks=lock_manager or locks,
            pipeline=test_settings.pipeline(CANCEL_PIPELINE),
            worker_id="cancel-worker",
            transition_retry_limit=test_settings.transition_retry_limit,
            metrics=metrics,
        )

    return factory


@pytest.fixture
def cancel_consumer(make_cancel_consumer) -> CancelConsumer:
    """Create a cancel consumer."""
    return make_cancel_consumer()


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample email payload."""
    return {
        "to": "user@example.com",
        "from_address": "no-reply@example.com",
        "subject": "Welcome",
        "html": "<p>Hello</p>",
    }


@pytest.fixture
def make_job(clock, sample_payload):
    """Factory for unsaved PENDING jobs."""

    def factory(job_id: str, max_attempts: int = 3) -> EmailJob:
        return EmailJob(
            id=job_id,
            status=JobStatus.PENDING,
            payload=sample_payload,
            max_attempts=max_attempts,
            created_at=clock(),
            updated_at=clock(),
        )

    return factory


@pytest.fixture
def make_transport():
    """Factory for recording transports."""
    return RecordingTransport
