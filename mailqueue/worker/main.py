"""
Consumer processes for the send and cancel queues.

Both processes are built from the same pipeline template; only the queue
names and the state machine differ.
"""

import asyncio
import logging
import signal

from prometheus_client import start_http_server
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailqueue.config import Settings, get_settings
from mailqueue.constants import CANCEL_PIPELINE, SEND_PIPELINE
from mailqueue.db import JobStore, LockManager, TableNames, Tables, build_tables, close_db, get_engine, init_db
from mailqueue.errors import ConfigurationError
from mailqueue.observability.logging import setup_logging
from mailqueue.observability.metrics import MetricsCollector
from mailqueue.observability.tracing import instrument_sqlalchemy, setup_tracing
from mailqueue.queue import SqlMessageQueue
from mailqueue.transport import EmailTransport, build_transport
from mailqueue.worker.base import QueueConsumer
from mailqueue.worker.cancel import CancelConsumer
from mailqueue.worker.send import SendConsumer

logger = logging.getLogger(__name__)


def build_consumer(
    pipeline_name: str,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    tables: Tables,
    transport: EmailTransport | None = None,
    metrics: MetricsCollector | None = None,
) -> QueueConsumer:
    """
    Wire a consumer for one pipeline.

    Args:
        pipeline_name: ``send`` or ``cancel``.
        settings: Application settings.
        session_factory: Database session factory.
        tables: Table definitions.
        transport: Email transport for the send pipeline. Built from settings if not given.
        metrics: Metrics collector. Defaults to the process-wide collector.

    Returns:
        QueueConsumer: The configured consumer.
    """
    pipeline = settings.pipeline(pipeline_name)
    queue = SqlMessageQueue.for_pipeline(session_factory, tables, pipeline)
    store = JobStore(session_factory, tables)
    locks = LockManager(session_factory, tables)

    if pipeline_name == SEND_PIPELINE:
        return SendConsumer(
            queue=queue,
            store=store,
            locks=locks,
            pipeline=pipeline,
            transport=transport or build_transport(settings),
            transport_timeout_seconds=settings.transport_timeout_seconds,
            send_interval_seconds=settings.send_interval_seconds,
            worker_id=settings.worker_id,
            transition_retry_limit=settings.transition_retry_limit,
            metrics=metrics,
        )
    if pipeline_name == CANCEL_PIPELINE:
        return CancelConsumer(
            queue=queue,
            store=store,
            locks=locks,
            pipeline=pipeline,
            worker_id=settings.worker_id,
            transition_retry_limit=settings.transition_retry_limit,
            metrics=metrics,
        )
    raise ConfigurationError(f"Unknown pipeline: {pipeline_name}")


async def run_async(pipeline_name: str) -> None:
    """Run one consumer asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    setup_tracing(settings)

    session_factory = await init_db(settings)
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine(settings).sync_engine)

    start_http_server(settings.prometheus_port)

    tables = build_tables(TableNames.from_settings(settings))
    consumer = build_consumer(pipeline_name, settings, session_factory, tables)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(consumer.stop())
        )

    try:
        await consumer.start()
    finally:
        if isinstance(consumer, SendConsumer):
            await consumer.transport.aclose()
        await close_db()


def run_send() -> None:
    """Run the send queue consumer."""
    asyncio.run(run_async(SEND_PIPELINE))


def run_cancel() -> None:
    """Run the cancel queue consumer."""
    asyncio.run(run_async(CANCEL_PIPELINE))
