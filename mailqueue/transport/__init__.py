"""
Transport module.
Contains the email transport contract and its adapters.
"""

from mailqueue.config import Settings
from mailqueue.errors import ConfigurationError
from mailqueue.secrets import SecretProvider, build_secret_provider
from mailqueue.transport.base import EmailTransport
from mailqueue.transport.logging_transport import LoggingTransport
from mailqueue.transport.resend import ResendTransport


def build_transport(
    settings: Settings,
    secrets: SecretProvider | None = None,
) -> EmailTransport:
    """
    Build the configured email transport.

    Args:
        settings: Application settings.
        secrets: Secret provider. Built from settings if not given.

    Returns:
        EmailTransport: The transport selected by ``transport_backend``.
    """
    if settings.transport_backend == "logging":
        return LoggingTransport()
    if settings.transport_backend == "resend":
        return ResendTransport(
            secrets=secrets or build_secret_provider(settings),
            api_key_name=settings.resend_api_key_name,
            default_from_address=settings.default_from_address,
            base_url=settings.resend_api_url,
            timeout_seconds=settings.transport_timeout_seconds,
            idempotent=settings.transport_idempotent,
        )
    raise ConfigurationError(f"Unknown transport backend: {settings.transport_backend}")


__all__ = [
    "EmailTransport",
    "LoggingTransport",
    "ResendTransport",
    "build_transport",
]
