"""
App Store Connect developer assertion.

Signs a short-lived ES256 JWT with the App Store Connect API key. The token is
sent as a bearer credential to Apple's key and server API endpoints and is
cached in memory until shortly before it expires.
"""

import base64
import binascii
import time

import jwt
from structlog import get_logger

from premium_entitlements.config import Settings
from premium_entitlements.models.apple_storekit import AppleStoreKitConfig

logger = get_logger(__name__)

TOKEN_LIFETIME_SECONDS = 3600
REFRESH_MARGIN_SECONDS = 300


class DeveloperTokenProvider:
    """Generates and caches the developer assertion for one API key."""

    def __init__(self, config: AppleStoreKitConfig) -> None:
        self.config = config
        self._token: str | None = None
        self._expires_at: float = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeveloperTokenProvider | None":
        """Build a provider when an App Store Connect key is configured."""
        if not settings.developer_token_configured:
            return None
        return cls(
            AppleStoreKitConfig(
                key_id=settings.apple_key_id,
                issuer_id=settings.apple_issuer_id,
                private_key=settings.apple_private_key,
                bundle_id=settings.apple_bundle_id,
                environment=settings.apple_environment,
            )
        )

    def _private_key_pem(self) -> str:
        """The key may be configured as raw PEM or base64 of the PEM."""
        private_key = self.config.private_key
        if "BEGIN" in private_key:
            return private_key
        try:
            return base64.b64decode(private_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return private_key

    def get_token(self) -> str:
        """
        Return a valid assertion, reusing the cached one until 5 minutes before expiry.

        The JWT is valid for up to 60 minutes.
        """
        now = time.time()
        if self._token and now < (self._expires_at - REFRESH_MARGIN_SECONDS):
            return self._token

        expires_at = now + TOKEN_LIFETIME_SECONDS
        payload = {
            "iss": self.config.issuer_id,
            "iat": int(now),
            "exp": int(expires_at),
            "aud": "appstoreconnect-v1",
            "bid": self.config.bundle_id,
        }

        # Apple requires ES256
        token = jwt.encode(
            payload,
            self._private_key_pem(),
            algorithm="ES256",
            headers={"kid": self.config.key_id},
        )

        self._token = token
        self._expires_at = expires_at
        logger.debug("developer_token_generated", key_id=self.config.key_id)
        return token
