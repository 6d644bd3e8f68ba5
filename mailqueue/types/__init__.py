"""
Type definitions for the dispatch pipeline.
Contains input/output type definitions grouped by module.
"""

from mailqueue.types.job import (
    EmailJob,
    EmailPayload,
    JobMutation,
    LockInfo,
    TransportResult,
)
from mailqueue.types.messages import (
    JobMessage,
    QueueMessage,
)

__all__ = [
    # Job types
    "EmailJob",
    "EmailPayload",
    "JobMutation",
    "LockInfo",
    "TransportResult",
    # Queue types
    "JobMessage",
    "QueueMessage",
]
