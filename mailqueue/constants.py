"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Email job lifecycle states.

    State transitions:
    - PENDING -> SENDING (send attempt started)
    - PENDING -> CANCELLED (cancel processed before sending)
    - SENDING -> SENT (transport accepted the email)
    - SENDING -> PENDING (retryable transport failure, or idempotent crash recovery)
    - SENDING -> FAILED (max attempts reached, or ambiguous outcome after a crash)
    """

    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class MessageOutcome(StrEnum):
    """Final decision for a dequeued message."""

    ACKNOWLEDGED = "acknowledged"
    DEFERRED = "deferred"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.SENDING, JobStatus.CANCELLED}),
    JobStatus.SENDING: frozenset({JobStatus.SENT, JobStatus.PENDING, JobStatus.FAILED}),
    JobStatus.SENT: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.SENT, JobStatus.CANCELLED, JobStatus.FAILED}
)

# Pipelines
SEND_PIPELINE = "send"
CANCEL_PIPELINE = "cancel"

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MAX_RECEIVE_COUNT = 3
MIN_VISIBILITY_TIMEOUT_MULTIPLIER = 6

# Metrics names
METRIC_MESSAGES_RECEIVED = "queue_messages_received_total"
METRIC_MESSAGES_PROCESSED = "queue_messages_processed_total"
METRIC_LOCK_ACQUISITIONS = "job_lock_acquisitions_total"
METRIC_JOB_TRANSITIONS = "email_job_transitions_total"
METRIC_TRANSPORT_SENDS = "email_transport_sends_total"
METRIC_TRANSPORT_DURATION = "email_transport_duration_seconds"
METRIC_DEAD_LETTER_DEPTH = "dead_letter_queue_depth"
METRIC_AMBIGUOUS_SENDS = "email_ambiguous_sends_total"

# Trace span names
SPAN_PROCESS_MESSAGE = "process_message"
SPAN_TRANSPORT_SEND = "transport_send"
