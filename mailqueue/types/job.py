"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from mailqueue.constants import TERMINAL_STATUSES, JobStatus


class EmailPayload(BaseModel):
    """
    What to send.
    Owned by the transport; the pipeline stores it without interpreting it.
    """

    to: str
    from_address: str | None = None
    subject: str | None = None
    html: str | None = None
    template_id: str | None = None
    template_params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_body_or_template(self) -> "EmailPayload":
        if self.template_id is None and (self.subject is None or self.html is None):
            raise ValueError("payload needs either template_id or both subject and html")
        return self


class EmailJob(BaseModel):
    """
    Durable record of one email to be sent.
    """

    id: str
    status: JobStatus
    payload: dict[str, Any]
    attempt_count: int = 0
    max_attempts: int
    lock_token: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    last_error: str | None = None
    transport_response: dict[str, Any] | None = None
    needs_reconciliation: bool = False

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition can happen."""
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_attempts(self) -> int:
        """Get remaining send attempts."""
        return max(0, self.max_attempts - self.attempt_count)


@dataclass
class JobMutation:
    """
    Field changes applied together with a status transition.

    Fields left as None are not touched.
    """

    increment_attempts: bool = False
    last_error: str | None = None
    clear_error: bool = False
    transport_response: dict[str, Any] | None = None
    needs_reconciliation: bool | None = None


@dataclass
class LockInfo:
    """
    A row of the lock table.
    """

    resource_key: str
    owner: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if the lock no longer protects its resource."""
        return self.expires_at <= now


class TransportResult(BaseModel):
    """
    Result of handing an email to the transport.
    """

    provider: str
    message_id: str | None = None
    response: dict[str, Any] | None = None
    duration_ms: float | None = None
