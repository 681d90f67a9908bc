"""Unit tests for surveyhooks configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from surveyhooks import __version__
from surveyhooks.config import RetryPolicy, Settings


class TestRetryPolicy:
    """Tests for RetryPolicy model."""

    def test_defaults(self):
        """Defaults give 1, 2, 4, 8 minute backoff capped at 15 minutes."""
        policy = RetryPolicy()
        assert policy.base_delay_seconds == 60.0
        assert policy.max_delay_seconds == 900.0
        assert policy.jitter_ratio == 0.1
        assert policy.retry_after_max_seconds == 3600.0

    def test_custom_policy(self):
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=10, jitter_ratio=0)
        assert policy.base_delay_seconds == 1.0
        assert policy.jitter_ratio == 0.0

    def test_max_below_base_rejected(self):
        """The cap must not be below the base delay."""
        with pytest.raises(ValidationError, match="max_delay_seconds"):
            RetryPolicy(base_delay_seconds=100, max_delay_seconds=10)

    def test_jitter_bounds(self):
        with pytest.raises(ValidationError):
            RetryPolicy(jitter_ratio=1.5)
        with pytest.raises(ValidationError):
            RetryPolicy(jitter_ratio=-0.1)

    def test_base_delay_positive(self):
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay_seconds=0)


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.delivery_timeout_seconds == 30.0
        assert settings.max_concurrent_deliveries == 10
        assert settings.default_max_retries == 3
        assert settings.response_body_limit == 10000
        assert settings.storage_backend == "memory"
        assert settings.qdrant_url == "http://localhost:6333"
        assert settings.collection_prefix == "surveyhooks"
        assert settings.recover_on_start is True

    def test_user_agent_carries_version(self):
        settings = Settings(_env_file=None)
        assert settings.user_agent == f"surveyhooks/{__version__}"

    def test_retry_policy_default(self):
        settings = Settings(_env_file=None)
        assert isinstance(settings.retry_policy, RetryPolicy)
        assert settings.retry_policy.base_delay_seconds == 60.0

    def test_storage_backends(self):
        """Only valid storage backends should be accepted."""
        for backend in ["memory", "qdrant"]:
            settings = Settings(storage_backend=backend, _env_file=None)
            assert settings.storage_backend == backend

        with pytest.raises(ValidationError):
            Settings(storage_backend="postgres", _env_file=None)

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        settings = Settings(log_format="json", _env_file=None)
        assert settings.log_format == "json"

        settings = Settings(log_format="text", _env_file=None)
        assert settings.log_format == "text"

        with pytest.raises(ValidationError):
            Settings(log_format="xml", _env_file=None)

    def test_timeout_bounds(self):
        """Delivery timeout must stay within 1 to 120 seconds."""
        with pytest.raises(ValidationError):
            Settings(delivery_timeout_seconds=0.5, _env_file=None)
        with pytest.raises(ValidationError):
            Settings(delivery_timeout_seconds=300, _env_file=None)

    def test_max_retries_bounds(self):
        with pytest.raises(ValidationError):
            Settings(default_max_retries=11, _env_file=None)

    def test_env_prefix(self):
        """Settings should use SURVEYHOOKS_ prefix for environment variables."""
        with patch.dict(os.environ, {"SURVEYHOOKS_LOG_LEVEL": "DEBUG"}):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_env_timeout(self):
        """SURVEYHOOKS_DELIVERY_TIMEOUT_SECONDS should override default."""
        with patch.dict(os.environ, {"SURVEYHOOKS_DELIVERY_TIMEOUT_SECONDS": "10"}):
            settings = Settings(_env_file=None)
            assert settings.delivery_timeout_seconds == 10.0

    def test_env_nested_retry_policy(self):
        """Nested retry policy fields use the __ delimiter."""
        with patch.dict(os.environ, {"SURVEYHOOKS_RETRY_POLICY__BASE_DELAY_SECONDS": "5"}):
            settings = Settings(_env_file=None)
            assert settings.retry_policy.base_delay_seconds == 5.0
            assert settings.retry_policy.max_delay_seconds == 900.0

    def test_optional_api_key(self):
        settings = Settings(_env_file=None)
        assert settings.qdrant_api_key is None or isinstance(settings.qdrant_api_key, str)

    def test_short_production_timeout_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="surveyhooks.config"):
            Settings(env="production", delivery_timeout_seconds=2, _env_file=None)
        assert "delivery_timeout_seconds" in caplog.text
