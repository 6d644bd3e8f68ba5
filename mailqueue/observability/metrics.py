"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

from mailqueue.constants import (
    METRIC_AMBIGUOUS_SENDS,
    METRIC_DEAD_LETTER_DEPTH,
    METRIC_JOB_TRANSITIONS,
    METRIC_LOCK_ACQUISITIONS,
    METRIC_MESSAGES_PROCESSED,
    METRIC_MESSAGES_RECEIVED,
    METRIC_TRANSPORT_DURATION,
    METRIC_TRANSPORT_SENDS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the dispatch pipeline.

    Collects metrics for:
    - Messages received and their outcome per queue
    - Lock acquisitions (acquired or contended)
    - Job status transitions
    - Transport sends and latency
    - Dead-letter queue depth
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.messages_received = Counter(
            METRIC_MESSAGES_RECEIVED,
            "Total number of queue messages received",
            ["queue"],
            registry=self._registry,
        )

        self.messages_processed = Counter(
            METRIC_MESSAGES_PROCESSED,
            "Total number of queue messages processed, by outcome",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.lock_acquisitions = Counter(
            METRIC_LOCK_ACQUISITIONS,
            "Total number of job lock acquisition attempts",
            ["pipeline", "result"],
            registry=self._registry,
        )

        self.job_transitions = Counter(
            METRIC_JOB_TRANSITIONS,
            "Total number of job status transitions",
            ["from_status", "to_status"],
            registry=self._registry,
        )

        self.transport_sends = Counter(
            METRIC_TRANSPORT_SENDS,
            "Total number of transport send attempts",
            ["provider", "result"],
            registry=self._registry,
        )

        self.transport_duration = Histogram(
            METRIC_TRANSPORT_DURATION,
            "Transport send duration in seconds",
            ["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        self.ambiguous_sends = Counter(
            METRIC_AMBIGUOUS_SENDS,
            "Jobs found mid-send after a worker crash",
            ["resolution"],
            registry=self._registry,
        )

        self.dead_letter_depth = Gauge(
            METRIC_DEAD_LETTER_DEPTH,
            "Number of messages in a dead-letter queue",
            ["queue"],
            registry=self._registry,
        )

    def record_message_received(self, queue: str) -> None:
        """Record a received message."""
        self.messages_received.labels(queue=queue).inc()

    def record_message_processed(self, queue: str, outcome: str) -> None:
        """Record the outcome of a processed message."""
        self.messages_processed.labels(queue=queue, outcome=outcome).inc()

    def record_lock_acquisition(self, pipeline: str, acquired: bool) -> None:
        """Record a lock acquisition attempt."""
        result = "acquired" if acquired else "contended"
        self.lock_acquisitions.labels(pipeline=pipeline, result=result).inc()

    def record_transition(self, from_status: str, to_status: str) -> None:
        """Record a job status transition."""
        self.job_transitions.labels(from_status=from_status, to_status=to_status).inc()

    def record_transport_send(
        self,
        provider: str,
        success: bool,
        duration_seconds: float,
    ) -> None:
        """Record a transport send attempt."""
        result = "success" if success else "failure"
        self.transport_sends.labels(provider=provider, result=result).inc()
        self.transport_duration.labels(provider=provider).observe(duration_seconds)

    def record_ambiguous_send(self, resolution: str) -> None:
        """Record how a job found mid-send was resolved."""
        self.ambiguous_sends.labels(resolution=resolution).inc()

    def update_dead_letter_depth(self, queue: str, depth: int) -> None:
        """Update the depth of a dead-letter queue."""
        self.dead_letter_depth.labels(queue=queue).set(depth)


def get_metrics() -> MetricsCollector:
    """
    Get the process-wide metrics collector, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
