"""
App Store Server API client - authenticated calls with the developer assertion.

Currently used to ask Apple to send a TEST notification to the configured
webhook, which exercises the full signature verification path end to end.
"""

import httpx
from structlog import get_logger

from premium_entitlements.config import ConfigurationError, Settings
from premium_entitlements.exceptions import UpstreamUnavailableError
from premium_entitlements.services.developer_token import DeveloperTokenProvider

logger = get_logger(__name__)


class AppStoreServerClient:
    """Minimal App Store Server API client."""

    def __init__(self, token_provider: DeveloperTokenProvider, timeout: float = 30.0) -> None:
        self.token_provider = token_provider
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppStoreServerClient":
        """Build a client, failing when no App Store Connect key is configured."""
        provider = DeveloperTokenProvider.from_settings(settings)
        if provider is None:
            raise ConfigurationError(
                "APPLE_KEY_ID, APPLE_ISSUER_ID, APPLE_PRIVATE_KEY and APPLE_BUNDLE_ID are required"
            )
        return cls(provider, timeout=settings.apple_http_timeout_seconds)

    async def _make_request(self, method: str, endpoint: str) -> dict[str, object]:
        """Make authenticated request to App Store Server API."""
        url = f"{self.token_provider.config.api_base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.token_provider.get_token()}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(method, url, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError("app_store_server_api", str(exc)) from exc

        if response.status_code >= 400:
            logger.error(
                "app_store_server_api_error",
                status=response.status_code,
                error=response.text[:500],
            )
            raise UpstreamUnavailableError(
                "app_store_server_api",
                f"API error: {response.status_code}",
                status_code=response.status_code,
            )

        result: dict[str, object] = response.json()
        return result

    async def request_test_notification(self) -> str:
        """
        Request a test notification from Apple.

        Returns:
            Test notification token
        """
        logger.info("requesting_apple_test_notification")
        result = await self._make_request("POST", "/inApps/v1/notifications/test")

        token = str(result.get("testNotificationToken", ""))
        logger.info(
            "apple_test_notification_requested",
            token=token[:20] + "..." if token else "",
        )
        return token
