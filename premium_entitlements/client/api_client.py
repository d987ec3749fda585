"""
Premium status client - reports purchases to the entitlement API.
"""

from dataclasses import dataclass

import httpx
from structlog import get_logger

from premium_entitlements.client.config import ClientSettings
from premium_entitlements.client.premium import PremiumPurchase
from premium_entitlements.exceptions import PremiumStatusError

logger = get_logger(__name__)

UNREACHABLE_MESSAGE = "Unable to reach the server. Please try again."


@dataclass(frozen=True)
class PremiumStatus:
    """Server view of the user's premium access."""

    is_premium: bool
    product_id: str | None = None
    transaction_id: str | None = None
    environment: str | None = None
    expires_at: str | None = None


class PremiumStatusClient:
    """Calls the premium endpoints with the user's access token."""

    def __init__(self, base_url: str, access_token: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: ClientSettings, access_token: str) -> "PremiumStatusClient":
        return cls(settings.api_base_url, access_token, timeout=settings.api_timeout_seconds)

    async def _request(self, method: str, path: str, body: dict | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=body,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as exc:
            logger.warning("premium_api_unreachable", path=path, error=str(exc))
            raise PremiumStatusError(UNREACHABLE_MESSAGE) from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("premium_api_error", path=path, status=response.status_code, detail=detail)
            raise PremiumStatusError(detail, status_code=response.status_code)

        data = response.json()
        return data if isinstance(data, dict) else {}

    async def submit_purchase(
        self, purchase: PremiumPurchase, app_account_token: str | None = None
    ) -> PremiumStatus:
        """Send a purchase for verification and return the granted status."""
        data = await self._request(
            "POST",
            "/v1/premium/status",
            {
                "isPremium": True,
                "receiptData": purchase.receipt_data,
                "productId": purchase.product_id,
                "transactionId": purchase.transaction_id,
                "appAccountToken": app_account_token,
            },
        )
        return PremiumStatus(
            is_premium=bool(data.get("isPremium")),
            product_id=data.get("productId"),
            transaction_id=data.get("transactionId"),
            environment=data.get("environment"),
            expires_at=data.get("expiresAt"),
        )

    async def clear_premium(self) -> PremiumStatus:
        """Downgrade the user."""
        await self._request("POST", "/v1/premium/status", {"isPremium": False})
        return PremiumStatus(is_premium=False)

    async def delete_account(self) -> None:
        """Delete the user's account."""
        await self._request("DELETE", "/v1/users/me")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"Request failed with status {response.status_code}"
    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, str) and detail:
        return detail
    return f"Request failed with status {response.status_code}"
