"""
Dead-letter monitor.

Periodically reports the depth of every dead-letter queue to metrics and
logs, so quarantined messages get an operator's attention.
"""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from mailqueue.config import get_settings
from mailqueue.db import TableNames, build_tables, close_db, init_db
from mailqueue.deadletter.absorber import DeadLetterAbsorber
from mailqueue.errors import QueueUnavailable
from mailqueue.observability.logging import setup_logging
from mailqueue.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class DeadLetterMonitor:
    """
    Dead-letter monitor loop.

    Runs periodically to:
    1. Count messages in each dead-letter queue
    2. Publish the counts as a gauge
    3. Warn when a queue is not empty
    """

    def __init__(
        self,
        absorber: DeadLetterAbsorber,
        interval_seconds: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            absorber: Dead-letter absorber to inspect.
            interval_seconds: Seconds between checks.
            metrics: Metrics collector. Defaults to the process-wide collector.
        """
        self.absorber = absorber
        self.interval = interval_seconds or get_settings().deadletter_monitor_interval_seconds
        self._running = False
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the monitor loop."""
        logger.info(f"Dead-letter monitor starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except QueueUnavailable as e:
                logger.warning("Queue unavailable", extra={"error": str(e)})
            except Exception as e:
                logger.exception(f"Error in dead-letter monitor loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Dead-letter monitor stopped")

    async def stop(self) -> None:
        """Stop the monitor."""
        logger.info("Dead-letter monitor stopping")
        self._running = False

    async def run_once(self) -> dict[str, int]:
        """
        Check every dead-letter queue once.

        Returns:
            Dictionary of queue name -> depth.
        """
        counts = await self.absorber.counts()

        for queue_name, depth in counts.items():
            self._metrics.update_dead_letter_depth(queue_name, depth)
            if depth > 0:
                logger.warning(
                    "Dead-letter queue has messages",
                    extra={"queue": queue_name, "depth": depth},
                )

        return counts


async def run_async() -> None:
    """Run the monitor asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    session_factory = await init_db(settings)
    start_http_server(settings.prometheus_port)

    tables = build_tables(TableNames.from_settings(settings))
    monitor = DeadLetterMonitor(DeadLetterAbsorber.from_settings(session_factory, tables, settings))

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(monitor.stop())
        )

    try:
        await monitor.start()
    finally:
        await close_db()


def run() -> None:
    """Run the dead-letter monitor."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
