"""
Client Configuration - Pydantic Settings for the purchase client.

Loaded from PREMIUM_* environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_PRODUCT_ID = "com.dailydraw.premium.dev"


class ClientSettings(BaseSettings):
    """Purchase client settings."""

    # Empty disables native purchases
    product_id: str = ""
    platform: str = "ios"
    purchase_timeout_seconds: float = 120.0
    # Dev builds fall back to a mock purchase when native IAP is unavailable
    dev_mode: bool = False
    api_base_url: str = "http://localhost:8000"
    api_timeout_seconds: float = 30.0

    model_config = SettingsConfigDict(
        env_prefix="PREMIUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def native_iap_enabled(self) -> bool:
        """Native purchases run on iOS with a configured product id."""
        return self.platform.lower() == "ios" and bool(self.product_id)
