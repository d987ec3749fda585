"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Premium Entitlements API"
    api_version: str = "0.1.0"
    api_description: str = "Grants and revokes premium access from App Store purchases"

    # User authentication - HS256 secret used to sign session access tokens
    auth_jwt_secret: str = ""
    auth_jwt_audience: str | None = "authenticated"

    # Apple receipt verification (verifyReceipt)
    apple_iap_shared_secret: str = ""
    apple_verify_receipt_production_url: str = "https://buy.itunes.apple.com/verifyReceipt"
    apple_verify_receipt_sandbox_url: str = "https://sandbox.itunes.apple.com/verifyReceipt"

    # App Store Server Notifications - public key sets
    apple_jwks_production_url: str = (
        "https://api.storekit.itunes.apple.com/inApps/v1/notifications/jwsPublicKeys"
    )
    apple_jwks_sandbox_url: str = (
        "https://api.storekit-sandbox.itunes.apple.com/inApps/v1/notifications/jwsPublicKeys"
    )
    # Original behaviour acknowledged TEST pings before verifying them. Off by default.
    allow_unverified_test_notifications: bool = False

    # App Store Connect API key - optional, used for the developer bearer assertion
    apple_key_id: str = ""
    apple_issuer_id: str = ""
    apple_private_key: str = ""  # .p8 contents, raw or base64 encoded
    apple_bundle_id: str = ""
    apple_environment: str = "production"

    # Outbound HTTP
    apple_http_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "premium-entitlements-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.apple_environment.lower() not in ("production", "sandbox"):
            errors.append("APPLE_ENVIRONMENT must be 'production' or 'sandbox'")

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
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def developer_token_configured(self) -> bool:
        """True when every App Store Connect key field is present."""
        return all(
            (self.apple_key_id, self.apple_issuer_id, self.apple_private_key, self.apple_bundle_id)
        )


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
