"""
Resend HTTP API transport.
"""

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from mailqueue.errors import SecretUnavailable, TransportFailure
from mailqueue.secrets import SecretProvider
from mailqueue.types.job import EmailPayload, TransportResult

logger = logging.getLogger(__name__)


class ResendTransport:
    """
    Sends email through the Resend REST API.

    Every request carries an ``Idempotency-Key`` equal to the job id, so a
    retried request for the same job is deduplicated by the provider within
    its idempotency window. Whether that is strong enough to treat the
    transport as idempotent is a deployment decision (``idempotent``).
    """

    name = "resend"

    def __init__(
        self,
        secrets: SecretProvider,
        api_key_name: str,
        default_from_address: str,
        base_url: str = "https://api.resend.com",
        timeout_seconds: float = 10.0,
        idempotent: bool = False,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the transport.

        Args:
            secrets: Provider for the API key.
            api_key_name: Name of the API key secret.
            default_from_address: Sender used when the payload has none.
            base_url: API base URL.
            timeout_seconds: Per-request timeout.
            idempotent: Whether repeated sends of one job are safe.
            client: Optional preconfigured client (tests inject a mock transport).
        """
        self.idempotent = idempotent
        self._secrets = secrets
        self._api_key_name = api_key_name
        self._default_from = default_from_address
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
        )

    async def send(self, job_id: str, payload: dict[str, Any]) -> TransportResult:
        """
        Send one email.

        Args:
            job_id: The job id, used as idempotency key.
            payload: Email payload as stored on the job.

        Returns:
            TransportResult with the provider message id and raw response.

        Raises:
            TransportFailure: On invalid payload, missing credentials,
                network errors or a non-2xx response.
        """
        try:
            email = EmailPayload.model_validate(payload)
        except ValidationError as e:
            raise TransportFailure(f"Invalid email payload: {e.errors()[0]['msg']}") from e

        try:
            api_key = await self._secrets.get_secret(self._api_key_name)
        except SecretUnavailable as e:
            raise TransportFailure(str(e)) from e

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Idempotency-Key": job_id,
        }

        start_time = time.time()
        try:
            response = await self._client.post(
                "/emails",
                json=self._request_body(email),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Resend request failed",
                extra={"job_id": job_id, "error": str(e)},
            )
            raise TransportFailure(f"Resend request failed: {e}") from e

        duration_ms = (time.time() - start_time) * 1000

        if response.status_code >= 400:
            logger.warning(
                "Resend rejected email",
                extra={
                    "job_id": job_id,
                    "status_code": response.status_code,
                    "body": response.text[:500],
                },
            )
            raise TransportFailure(
                f"Resend returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        logger.info(
            "Email accepted by Resend",
            extra={"job_id": job_id, "message_id": body.get("id"), "duration_ms": duration_ms},
        )
        return TransportResult(
            provider=self.name,
            message_id=body.get("id"),
            response=body,
            duration_ms=duration_ms,
        )

    def _request_body(self, email: EmailPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "from": email.from_address or self._default_from,
            "to": [email.to],
        }
        if email.template_id is not None:
            body["template"] = {
                "id": email.template_id,
                "variables": email.template_params,
            }
            if email.subject is not None:
                body["subject"] = email.subject
        else:
            body["subject"] = email.subject
            body["html"] = email.html
        return body

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
