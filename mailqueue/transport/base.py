"""
Email transport contract.
"""

from typing import Any, Protocol

from mailqueue.types.job import TransportResult


class EmailTransport(Protocol):
    """
    Hands an email to a delivery provider.

    ``idempotent`` declares whether repeating ``send`` for the same job id is
    guaranteed to deliver at most once. The send consumer relies on it when
    it finds a job left mid-send by a crashed worker.
    """

    name: str
    idempotent: bool

    async def send(self, job_id: str, payload: dict[str, Any]) -> TransportResult:
        """
        Send one email.

        Raises:
            TransportFailure: If the provider did not accept the email.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
