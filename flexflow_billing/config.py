"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.

Apple App Store credentials are deliberately NOT validated here: a missing
credential degrades the service (Apple billing disabled), it does not stop
the process. See create_apple_store_service().
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "FlexFlow Billing API"
    api_version: str = "0.1.0"
    api_description: str = "Apple App Store subscription verification for FlexFlow"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "flexflow-billing-api"

    # Observability - Sampling
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Apple App Store Server API
    apple_private_key: str = ""  # .p8 contents (PEM, PEM with \n escapes, or base64)
    apple_key_id: str = ""  # Key ID from App Store Connect
    apple_issuer_id: str = ""  # Issuer ID from App Store Connect
    apple_bundle_id: str = ""  # e.g. "com.flexflow.app"
    apple_environment: str = "sandbox"  # sandbox or production
    apple_app_id: str | None = None  # Numeric Apple ID, required by Apple in production
    apple_enable_online_checks: bool = True  # Certificate revocation checks
    apple_resolve_auto_renew_status: bool = False  # Read autoRenewStatus from renewal info

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        Only settings that make the process itself unusable are checked here.
        """
        errors: list[str] = []

        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if not 0.0 <= self.trace_sample_rate <= 1.0:
            errors.append(
                f"TRACE_SAMPLE_RATE must be between 0.0 and 1.0, got: {self.trace_sample_rate}"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def missing_apple_credentials(self) -> list[str]:
        """Names of the required Apple environment variables that are empty."""
        required = {
            "APPLE_PRIVATE_KEY": self.apple_private_key,
            "APPLE_KEY_ID": self.apple_key_id,
            "APPLE_ISSUER_ID": self.apple_issuer_id,
            "APPLE_BUNDLE_ID": self.apple_bundle_id,
        }
        return [name for name, value in required.items() if not value]


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
