"""
Development transport that only logs.
"""

import logging
from typing import Any

from mailqueue.types.job import TransportResult

logger = logging.getLogger(__name__)


class LoggingTransport:
    """
    Logs the email instead of sending it.

    Nothing leaves the process, so repeating a send is harmless.
    """

    name = "logging"
    idempotent = True

    async def send(self, job_id: str, payload: dict[str, Any]) -> TransportResult:
        logger.info(
            "Email not sent (logging transport)",
            extra={
                "job_id": job_id,
                "to": payload.get("to"),
                "subject": payload.get("subject"),
                "template_id": payload.get("template_id"),
            },
        )
        return TransportResult(
            provider=self.name,
            message_id=f"logged-{job_id}",
            response={"logged": True},
            duration_ms=0.0,
        )

    async def aclose(self) -> None:
        return None
