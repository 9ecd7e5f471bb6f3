"""
Tests for application settings.
"""

import pytest

from flexflow_billing.config import ConfigurationError, Settings


class TestCriticalConfig:
    """Tests for fail-fast validation."""

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ConfigurationError, match="LOG_FORMAT"):
            Settings()

    def test_invalid_sample_rate(self, monkeypatch):
        monkeypatch.setenv("TRACE_SAMPLE_RATE", "1.5")

        with pytest.raises(ConfigurationError, match="TRACE_SAMPLE_RATE"):
            Settings()

    def test_missing_apple_credentials_do_not_fail(self, monkeypatch):
        """Apple billing is optional; the process still starts."""
        for name in ("APPLE_PRIVATE_KEY", "APPLE_KEY_ID", "APPLE_ISSUER_ID", "APPLE_BUNDLE_ID"):
            monkeypatch.delenv(name, raising=False)

        assert Settings().missing_apple_credentials == [
            "APPLE_PRIVATE_KEY",
            "APPLE_KEY_ID",
            "APPLE_ISSUER_ID",
            "APPLE_BUNDLE_ID",
        ]


class TestAppleSettings:
    """Tests for the APPLE_* variables."""

    def test_read_from_environment(self, apple_env):
        settings = Settings()

        assert settings.missing_apple_credentials == []
        assert settings.apple_bundle_id == "com.flexflow.app"
        assert settings.apple_environment == "sandbox"
        assert settings.apple_enable_online_checks is False

    def test_defaults(self, monkeypatch):
        for name in ("APPLE_ENVIRONMENT", "APPLE_APP_ID", "APPLE_ENABLE_ONLINE_CHECKS"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv("APPLE_RESOLVE_AUTO_RENEW_STATUS", raising=False)

        settings = Settings()

        assert settings.apple_environment == "sandbox"
        assert settings.apple_app_id is None
        assert settings.apple_enable_online_checks is True
        assert settings.apple_resolve_auto_renew_status is False
