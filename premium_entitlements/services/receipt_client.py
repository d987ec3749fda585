"""
Apple Receipt Client - verifyReceipt with production/sandbox redirect.

Every receipt is posted to production first. Apple answers 21007 for sandbox
receipts and 21008 for production receipts sent to sandbox; each triggers one
retry against the other environment.
"""

import time
from typing import Any

import httpx
from structlog import get_logger

from premium_entitlements.config import ConfigurationError, Settings
from premium_entitlements.exceptions import (
    ReceiptStatusError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.models.apple_storekit import (
    AppleReceiptStatus,
    ReceiptVerificationResult,
    describe_receipt_status,
)
from premium_entitlements.observability.metrics import metrics

logger = get_logger(__name__)


class AppleReceiptClient:
    """Client for Apple's verifyReceipt endpoints."""

    def __init__(
        self,
        shared_secret: str,
        production_url: str,
        sandbox_url: str,
        timeout: float = 30.0,
    ) -> None:
        self.shared_secret = shared_secret
        self.production_url = production_url
        self.sandbox_url = sandbox_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppleReceiptClient":
        """Build a client from application settings."""
        return cls(
            shared_secret=settings.apple_iap_shared_secret,
            production_url=settings.apple_verify_receipt_production_url,
            sandbox_url=settings.apple_verify_receipt_sandbox_url,
            timeout=settings.apple_http_timeout_seconds,
        )

    async def verify_receipt(self, receipt_data: str) -> ReceiptVerificationResult:
        """
        Verify a base64 receipt with Apple.

        Returns:
            Parsed verification result with status 0

        Raises:
            ConfigurationError: Shared secret is not configured
            ValidationError: Receipt data is not a string
            UpstreamUnavailableError: Apple could not be reached (retryable)
            ReceiptStatusError: Apple returned a non-zero status
        """
        if not self.shared_secret:
            raise ConfigurationError("APPLE_IAP_SHARED_SECRET is not configured.")

        if not isinstance(receipt_data, str):
            logger.error("receipt_data_not_string", type=type(receipt_data).__name__)
            raise ValidationError("Invalid receipt data type received from client.")

        logger.info("verifying_apple_receipt", receipt_length=len(receipt_data))

        response = await self._post(self.production_url, receipt_data)
        if response.status == AppleReceiptStatus.SANDBOX_RECEIPT_ON_PRODUCTION:
            response = await self._post(self.sandbox_url, receipt_data)
        elif response.status == AppleReceiptStatus.PRODUCTION_RECEIPT_ON_SANDBOX:
            response = await self._post(self.production_url, receipt_data)

        metrics.record_apple_status(response.status, response.environment or "unknown")
        logger.info(
            "apple_receipt_status",
            status=response.status,
            environment=response.environment,
            entries=len(response.transaction_entries),
        )

        if response.status != AppleReceiptStatus.VALID:
            raise ReceiptStatusError(response.status, describe_receipt_status(response.status))

        return response

    async def _post(self, url: str, receipt_data: str) -> ReceiptVerificationResult:
        """POST one verification request."""
        body: dict[str, Any] = {
            "receipt-data": receipt_data,
            "password": self.shared_secret,
            "exclude-old-transactions": True,
        }
        start = time.time()
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url,
                    json=body,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as exc:
            metrics.record_upstream_error("apple_verify_receipt")
            logger.error("apple_verify_receipt_unreachable", url=url, error=str(exc))
            raise UpstreamUnavailableError(
                "apple_verify_receipt", "Unable to reach Apple verification service"
            ) from exc

        if response.status_code >= 400:
            metrics.record_upstream_error("apple_verify_receipt")
            logger.error(
                "apple_verify_receipt_http_error",
                url=url,
                status=response.status_code,
                error=response.text[:500],
            )
            raise UpstreamUnavailableError(
                "apple_verify_receipt",
                "Apple verification request failed",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            metrics.record_upstream_error("apple_verify_receipt")
            raise UpstreamUnavailableError(
                "apple_verify_receipt", "Apple returned a non-JSON response"
            ) from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailableError(
                "apple_verify_receipt", "Apple returned an unexpected response"
            )

        result = ReceiptVerificationResult.from_response(data)
        logger.debug(
            "apple_verify_receipt_response",
            url=url,
            status=result.status,
            duration_seconds=time.time() - start,
        )
        return result
