"""
Unit tests for configuration invariants.
"""

import pytest
from pydantic import ValidationError

from mailqueue.config import PipelineConfig, Settings
from mailqueue.constants import CANCEL_PIPELINE, SEND_PIPELINE
from mailqueue.errors import ConfigurationError


def make_pipeline(**overrides) -> PipelineConfig:
    values = {
        "name": "send",
        "queue_name": "email-queue",
        "dead_letter_queue_name": "email-dlq",
        "visibility_timeout_seconds": 180,
        "max_receive_count": 3,
        "max_processing_seconds": 30,
        "lock_ttl_seconds": 60,
        "receive_wait_seconds": 20,
        "poll_interval_seconds": 1,
    }
    values.update(overrides)
    return PipelineConfig(**values)


class TestPipelineConfig:
    """Tests for the pipeline template."""

    def test_defaults_are_valid(self):
        """Test that the default settings build both pipelines."""
        settings = Settings()

        send = settings.pipeline(SEND_PIPELINE)
        cancel = settings.pipeline(CANCEL_PIPELINE)

        assert send.queue_name == "email-queue"
        assert send.dead_letter_queue_name == "email-dlq"
        assert cancel.queue_name == "cancel-email-queue"
        assert cancel.dead_letter_queue_name == "cancel-email-dlq"
        assert send.max_receive_count == 3
        assert send.visibility_timeout_seconds >= 6 * send.max_processing_seconds
        assert send.lock_ttl_seconds > send.max_processing_seconds
        assert send.concurrency == 1

    def test_visibility_timeout_too_short(self):
        """Test that visibility below six times processing time is rejected."""
        with pytest.raises(ConfigurationError, match="visibility timeout"):
            make_pipeline(visibility_timeout_seconds=179).validate()

    def test_lock_ttl_must_exceed_processing_time(self):
        """Test that a lock could not expire during processing."""
        with pytest.raises(ConfigurationError, match="lock TTL"):
            make_pipeline(lock_ttl_seconds=30).validate()

    def test_concurrency_must_be_one(self):
        """Test that parallel sending is refused."""
        with pytest.raises(ConfigurationError, match="concurrency"):
            make_pipeline(concurrency=2).validate()

    def test_dead_letter_queue_must_differ(self):
        """Test that a queue cannot redrive into itself."""
        with pytest.raises(ConfigurationError, match="dead-letter"):
            make_pipeline(dead_letter_queue_name="email-queue").validate()

    def test_unknown_pipeline(self):
        """Test asking for a pipeline that does not exist."""
        with pytest.raises(ConfigurationError):
            Settings().pipeline("memo")


class TestSettings:
    """Tests for settings validation."""

    def test_invalid_timing_fails_loading(self):
        """Test that settings with an unsafe visibility timeout do not load."""
        with pytest.raises((ConfigurationError, ValidationError)):
            Settings(queue_visibility_timeout_seconds=10)

    def test_transport_timeout_below_processing_time(self):
        """Test that a transport call must fit in the processing budget."""
        with pytest.raises((ConfigurationError, ValidationError)):
            Settings(transport_timeout_seconds=30, consumer_max_processing_seconds=30)

    def test_attempt_budget_within_receive_limit(self):
        """Test that failed attempts cannot outlast the receives of the send notification."""
        with pytest.raises((ConfigurationError, ValidationError), match="queue_max_receive_count"):
            Settings(default_max_attempts=5)

        settings = Settings(default_max_attempts=5, queue_max_receive_count=5)
        assert settings.pipeline(SEND_PIPELINE).max_receive_count == 5

    def test_send_interval_counts_against_processing_time(self):
        """Test that the pause after a send must also fit in the processing budget."""
        with pytest.raises((ConfigurationError, ValidationError), match="send_interval_seconds"):
            Settings(
                transport_timeout_seconds=9.8,
                send_interval_seconds=0.5,
                consumer_max_processing_seconds=10,
                queue_visibility_timeout_seconds=60,
                lock_ttl_seconds=15,
            )

    def test_env_override(self, monkeypatch):
        """Test loading values from the environment."""
        monkeypatch.setenv("SEND_QUEUE_NAME", "custom-queue")
        monkeypatch.setenv("QUEUE_MAX_RECEIVE_COUNT", "5")

        settings = Settings()

        assert settings.pipeline(SEND_PIPELINE).queue_name == "custom-queue"
        assert settings.pipeline(SEND_PIPELINE).max_receive_count == 5

    def test_dead_letter_queue_mapping(self):
        """Test the dead-letter to source queue mapping."""
        assert Settings().dead_letter_queues() == {
            "email-dlq": "email-queue",
            "cancel-email-dlq": "cancel-email-queue",
        }
