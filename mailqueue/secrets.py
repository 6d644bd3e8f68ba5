"""
Secret providers for transport credentials.

The production deployment mounts credentials as files; development reads
them from settings. Failures surface as SecretUnavailable and are turned
into a transport failure by the caller, so a missing key costs one attempt.
"""

import logging
from pathlib import Path
from typing import Protocol

from mailqueue.config import Settings
from mailqueue.errors import ConfigurationError, SecretUnavailable

logger = logging.getLogger(__name__)


class SecretProvider(Protocol):
    """Fetches credentials by name."""

    async def get_secret(self, name: str) -> str:
        """Return the secret value or raise SecretUnavailable."""
        ...


class SettingsSecretProvider:
    """
    Serves secrets from application settings.

    Only the configured Resend API key is known.
    """

    def __init__(self, settings: Settings):
        self._secrets: dict[str, str] = {}
        if settings.resend_api_key is not None:
            self._secrets[settings.resend_api_key_name] = settings.resend_api_key.get_secret_value()

    async def get_secret(self, name: str) -> str:
        value = self._secrets.get(name)
        if not value:
            raise SecretUnavailable(name, "not configured in settings")
        return value


class FileSecretProvider:
    """
    Serves secrets from a mounted directory, one file per secret.

    Values are read on every call so rotated credentials are picked up
    without a restart.
    """

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    async def get_secret(self, name: str) -> str:
        path = self._directory / name
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(
                "Failed to read secret file",
                extra={"secret": name, "path": str(path), "error": str(e)},
            )
            raise SecretUnavailable(name, str(e)) from e

        if not value:
            raise SecretUnavailable(name, "secret file is empty")
        return value


def build_secret_provider(settings: Settings) -> SecretProvider:
    """
    Build the configured secret provider.

    Args:
        settings: Application settings.

    Returns:
        SecretProvider: The provider selected by ``secret_backend``.
    """
    if settings.secret_backend == "settings":
        return SettingsSecretProvider(settings)
    if settings.secret_backend == "file":
        return FileSecretProvider(settings.secrets_dir)
    raise ConfigurationError(f"Unknown secret backend: {settings.secret_backend}")
