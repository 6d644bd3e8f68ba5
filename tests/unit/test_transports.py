"""
Unit tests for email transports and secret providers.
"""

import json

import httpx
import pytest
from pydantic import SecretStr

from mailqueue.config import Settings
from mailqueue.errors import ConfigurationError, SecretUnavailable, TransportFailure
from mailqueue.secrets import FileSecretProvider, SettingsSecretProvider, build_secret_provider
from mailqueue.transport import LoggingTransport, ResendTransport, build_transport


class StaticSecrets:
    def __init__(self, value: str | None = "re_test_key"):
        self.value = value

    async def get_secret(self, name: str) -> str:
        if self.value is None:
            raise SecretUnavailable(name, "not configured")
        return self.value


def make_resend(handler, secrets=None) -> ResendTransport:
    client = httpx.AsyncClient(
        base_url="https://api.resend.test",
        transport=httpx.MockTransport(handler),
    )
    return ResendTransport(
        secrets=secrets or StaticSecrets(),
        api_key_name="resend-api-key",
        default_from_address="no-reply@sunbath.top",
        client=client,
    )


class TestResendTransport:
    """Tests for ResendTransport."""

    async def test_send_success(self):
        """Test request shape and result mapping."""
        seen: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(status_code=200, json={"id": "email-123"}, request=request)

        transport = make_resend(handler)
        result = await transport.send(
            "job-1",
            {"to": "user@example.com", "subject": "Hi", "html": "<p>Hi</p>"},
        )
        await transport.aclose()

        assert result.provider == "resend"
        assert result.message_id == "email-123"
        assert result.response == {"id": "email-123"}

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/emails"
        assert request.headers["Authorization"] == "Bearer re_test_key"
        assert request.headers["Idempotency-Key"] == "job-1"
        assert json.loads(request.content) == {
            "from": "no-reply@sunbath.top",
            "to": ["user@example.com"],
            "subject": "Hi",
            "html": "<p>Hi</p>",
        }

    async def test_send_template(self):
        """Test that template payloads are sent as a template reference."""
        bodies: list[dict] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(status_code=200, json={"id": "email-1"}, request=request)

        transport = make_resend(handler)
        await transport.send(
            "job-1",
            {
                "to": "user@example.com",
                "from_address": "memo@sunbath.top",
                "template_id": "reminder",
                "template_params": {"title": "Dentist"},
            },
        )

        assert bodies[0] == {
            "from": "memo@sunbath.top",
            "to": ["user@example.com"],
            "template": {"id": "reminder", "variables": {"title": "Dentist"}},
        }

    async def test_error_status_raises(self):
        """Test that a rejected request is a transport failure."""

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code=429, json={"message": "rate limited"}, request=request)

        transport = make_resend(handler)

        with pytest.raises(TransportFailure) as exc_info:
            await transport.send("job-1", {"to": "a@b.c", "subject": "s", "html": "h"})
        assert exc_info.value.status_code == 429

    async def test_network_error_raises(self):
        """Test that connection errors are transport failures."""

        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_resend(handler)

        with pytest.raises(TransportFailure, match="connection refused"):
            await transport.send("job-1", {"to": "a@b.c", "subject": "s", "html": "h"})

    async def test_missing_secret_is_transport_failure(self):
        """Test that an unavailable API key costs an attempt instead of crashing."""

        async def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        transport = make_resend(handler, secrets=StaticSecrets(None))

        with pytest.raises(TransportFailure, match="resend-api-key"):
            await transport.send("job-1", {"to": "a@b.c", "subject": "s", "html": "h"})

    async def test_invalid_payload_is_transport_failure(self):
        """Test that a payload with neither body nor template is refused."""

        async def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        transport = make_resend(handler)

        with pytest.raises(TransportFailure, match="Invalid email payload"):
            await transport.send("job-1", {"to": "a@b.c", "subject": "only a subject"})


class TestLoggingTransport:
    """Tests for LoggingTransport."""

    async def test_send_is_idempotent_noop(self):
        """Test that the development transport accepts everything."""
        transport = LoggingTransport()

        result = await transport.send("job-1", {"to": "a@b.c"})

        assert transport.idempotent is True
        assert result.provider == "logging"
        assert result.message_id == "logged-job-1"


class TestBuildTransport:
    """Tests for transport selection."""

    def test_logging_backend(self):
        """Test the default backend."""
        assert isinstance(build_transport(Settings(transport_backend="logging")), LoggingTransport)

    async def test_resend_backend(self):
        """Test that the idempotency flag comes from settings."""
        transport = build_transport(
            Settings(transport_backend="resend", transport_idempotent=True),
            secrets=StaticSecrets(),
        )

        assert isinstance(transport, ResendTransport)
        assert transport.idempotent is True
        await transport.aclose()

    def test_unknown_backend(self):
        """Test that an unknown backend is a configuration error."""
        with pytest.raises(ConfigurationError):
            build_transport(Settings(transport_backend="carrier-pigeon"))


class TestSecretProviders:
    """Tests for secret providers."""

    async def test_settings_provider(self):
        """Test reading the API key from settings."""
        provider = SettingsSecretProvider(Settings(resend_api_key=SecretStr("re_from_env")))

        assert await provider.get_secret("resend-api-key") == "re_from_env"
        with pytest.raises(SecretUnavailable):
            await provider.get_secret("other")

    async def test_settings_provider_without_key(self):
        """Test that a missing key is reported as unavailable."""
        provider = SettingsSecretProvider(Settings(resend_api_key=None))

        with pytest.raises(SecretUnavailable):
            await provider.get_secret("resend-api-key")

    async def test_file_provider(self, tmp_path):
        """Test reading a mounted secret file."""
        (tmp_path / "resend-api-key").write_text("re_from_file\n")
        provider = FileSecretProvider(tmp_path)

        assert await provider.get_secret("resend-api-key") == "re_from_file"

    async def test_file_provider_missing_or_empty(self, tmp_path):
        """Test missing and empty secret files."""
        (tmp_path / "empty").write_text("  \n")
        provider = FileSecretProvider(tmp_path)

        with pytest.raises(SecretUnavailable):
            await provider.get_secret("missing")
        with pytest.raises(SecretUnavailable, match="empty"):
            await provider.get_secret("empty")

    def test_build_secret_provider(self, tmp_path):
        """Test backend selection."""
        assert isinstance(
            build_secret_provider(Settings(secret_backend="file", secrets_dir=str(tmp_path))),
            FileSecretProvider,
        )
        assert isinstance(
            build_secret_provider(Settings(secret_backend="settings")),
            SettingsSecretProvider,
        )
        with pytest.raises(ConfigurationError):
            build_secret_provider(Settings(secret_backend="vault"))
