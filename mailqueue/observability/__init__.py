"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from mailqueue.observability.logging import bind_context, clear_context, setup_logging
from mailqueue.observability.metrics import MetricsCollector, get_metrics
from mailqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "clear_context",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
