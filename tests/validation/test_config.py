"""
Tests for FieldSyncConfig and the validate_config helper.

Tests validation rules for URL format, range constraints, boolean coercion,
environment variables, default values, and error handling.
"""

import pytest
from pydantic import ValidationError

from validation.config import FieldSyncConfig, validate_config


class TestFieldSyncConfig:
    """Tests for FieldSyncConfig model."""

    def test_valid_config(self, valid_config_dict):
        config = FieldSyncConfig(**valid_config_dict)

        assert config.data_dir == valid_config_dict["data_dir"]
        assert config.remote_api_key == "anon-key-abc123"
        assert config.max_retries == 3

    # =========================================================================
    # URL validation tests
    # =========================================================================

    @pytest.mark.parametrize("invalid_url", [
        "ftp://server",
        "file:///path",
        "db.example.org",
        "localhost:54321",
    ])
    def test_remote_url_must_be_http(self, invalid_url):
        """remote_url must start with http:// or https://."""
        config, error = validate_config({"remote_url": invalid_url})

        assert config is None
        assert "remote_url" in error

    def test_remote_url_trailing_slashes_removed(self):
        config = FieldSyncConfig(remote_url="https://db.example.org//")

        assert config.remote_url == "https://db.example.org"

    def test_remote_url_optional(self):
        assert FieldSyncConfig().remote_url is None

    # =========================================================================
    # Range tests
    # =========================================================================

    @pytest.mark.parametrize("retries,valid", [
        (0, False),
        (1, True),
        (5, True),
        (20, True),
        (21, False),
    ])
    def test_max_retries_range(self, retries, valid):
        config, error = validate_config({"max_retries": retries})
        assert (config is not None) == valid
        if not valid:
            assert "max_retries" in error

    @pytest.mark.parametrize("timeout,valid", [
        (0.5, False),
        (1.0, True),
        (300.0, True),
        (301.0, False),
    ])
    def test_item_timeout_range(self, timeout, valid):
        config, _ = validate_config({"item_timeout": timeout})
        assert (config is not None) == valid

    @pytest.mark.parametrize("days,valid", [
        (0, False),
        (1, True),
        (365, True),
        (366, False),
    ])
    def test_dlq_retention_days_range(self, days, valid):
        config, _ = validate_config({"dlq_retention_days": days})
        assert (config is not None) == valid

    def test_negative_poll_interval_rejected(self):
        config, error = validate_config({"poll_interval": -1})
        assert config is None
        assert "poll_interval" in error

    # =========================================================================
    # Boolean and log level coercion
    # =========================================================================

    @pytest.mark.parametrize("string_value,expected", [
        ("true", True),
        ("YES", True),
        ("1", True),
        ("false", False),
        ("No", False),
        ("0", False),
    ])
    def test_upsert_inserts_accepts_string(self, string_value, expected):
        assert FieldSyncConfig(upsert_inserts=string_value).upsert_inserts is expected

    def test_invalid_boolean_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            FieldSyncConfig(json_logs="maybe")
        errors = exc_info.value.errors()
        assert any("json_logs" in str(e.get("loc", [])) for e in errors)

    def test_log_level_lowercased(self):
        assert FieldSyncConfig(log_level="DEBUG").log_level == "debug"

    def test_invalid_log_level_rejected(self):
        config, error = validate_config({"log_level": "verbose"})
        assert config is None
        assert "log_level" in error

    # =========================================================================
    # Environment and defaults
    # =========================================================================

    def test_environment_variables(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FIELDSYNC_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("FIELDSYNC_REMOTE_URL", "https://db.example.org/")
        monkeypatch.setenv("FIELDSYNC_MAX_RETRIES", "7")

        config = FieldSyncConfig()

        assert config.data_dir == str(tmp_path)
        assert config.remote_url == "https://db.example.org"
        assert config.max_retries == 7

    def test_keyword_arguments_override_environment(self, monkeypatch):
        monkeypatch.setenv("FIELDSYNC_MAX_RETRIES", "7")

        assert FieldSyncConfig(max_retries=2).max_retries == 2

    def test_defaults_applied(self):
        config = FieldSyncConfig()

        assert config.data_dir == "./fieldsync-data"
        assert config.primary_key == "id"
        assert config.upsert_inserts is True
        assert config.connect_timeout == 5.0
        assert config.item_timeout == 30.0
        assert config.default_priority == 5
        assert config.max_retries == 5
        assert config.backoff_base == 5.0
        assert config.backoff_cap == 80.0
        assert config.circuit_failure_threshold == 3
        assert config.circuit_recovery_timeout == 60.0
        assert config.poll_interval == 0.0
        assert config.probe_interval == 0.0
        assert config.dlq_retention_days == 30
        assert config.log_level == "info"
        assert config.json_logs is True

    def test_multiple_errors_joined(self):
        config, error = validate_config({"max_retries": 0, "dlq_retention_days": 0})

        assert config is None
        assert "max_retries" in error
        assert "dlq_retention_days" in error
        assert "; " in error


class TestLogConfig:

    def test_api_key_masked(self, caplog):
        import logging

        config = FieldSyncConfig(remote_api_key="anon-key-abc123456")
        with caplog.at_level(logging.INFO, logger="FieldSync.config"):
            config.log_config()

        assert "anon****3456" in caplog.text
        assert "anon-key-abc123456" not in caplog.text
