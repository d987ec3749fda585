"""
Premium purchases - the operations the app calls to buy and restore premium.

NO DICTIONARIES - Results are PremiumPurchase dataclasses ready to be posted
to the premium-status endpoint.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime

from structlog import get_logger

from premium_entitlements.client.catalog import ProductDetails
from premium_entitlements.client.config import DEV_PRODUCT_ID, ClientSettings
from premium_entitlements.client.native import NativePurchase
from premium_entitlements.client.orchestrator import PurchaseOrchestrator
from premium_entitlements.exceptions import IapUnavailableError, ReceiptMissingError
from premium_entitlements.models.domain import millis_to_datetime, to_iso_millis

logger = get_logger(__name__)

IAP_UNAVAILABLE_MESSAGE = "In-app purchases are not available on this build. Missing product ID."
PURCHASE_RECEIPT_MISSING_MESSAGE = (
    "Apple did not return a receipt for this purchase. Please try again."
)
RESTORE_RECEIPT_MISSING_MESSAGE = (
    "Apple could not locate a receipt to restore. Try purchasing again."
)


@dataclass(frozen=True)
class PremiumPurchase:
    """Purchase details sent to the server for verification."""

    product_id: str | None
    transaction_id: str | None
    transaction_date: str | None
    receipt_data: str | None


def resolve_transaction_id(purchase: NativePurchase) -> str | None:
    """Prefer the original transaction id, which is stable across renewals."""
    return purchase.original_transaction_id or purchase.transaction_id


def format_transaction_date(timestamp_ms: int | None) -> str | None:
    if timestamp_ms is None:
        return None
    moment = millis_to_datetime(timestamp_ms)
    return to_iso_millis(moment) if moment is not None else None


class PremiumPurchases:
    """Buys, restores and describes the premium subscription."""

    def __init__(
        self, orchestrator: PurchaseOrchestrator | None, settings: ClientSettings
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings

    @property
    def native_available(self) -> bool:
        return self.orchestrator is not None and self.settings.native_iap_enabled

    def _fallback_purchase(self) -> PremiumPurchase:
        now_ms = int(time.time() * 1000)
        logger.info("using_dev_fallback_purchase")
        return PremiumPurchase(
            product_id=self.settings.product_id or DEV_PRODUCT_ID,
            transaction_id=f"dev-{now_ms}",
            transaction_date=to_iso_millis(datetime.now(UTC)),
            receipt_data=f"dev-receipt-{now_ms}",
        )

    def _orchestrator(self) -> PurchaseOrchestrator:
        """The orchestrator, when native purchases are usable."""
        if self.orchestrator is None or not self.native_available:
            raise IapUnavailableError(IAP_UNAVAILABLE_MESSAGE)
        return self.orchestrator

    async def load_premium_product_details(self) -> ProductDetails | None:
        """Product details for the paywall, or None when unavailable."""
        if not self.native_available or self.orchestrator is None:
            return None
        return await self.orchestrator.catalog.load_product_details(self.settings.product_id)

    async def purchase_premium(self) -> PremiumPurchase:
        """
        Run a purchase through the store and collect its receipt.

        Raises:
            IapUnavailableError: Native purchases unavailable outside dev mode
            ReceiptMissingError: No receipt after the purchase
            PurchaseError: Busy, timeout or store rejection
        """
        if not self.native_available and self.settings.dev_mode:
            return self._fallback_purchase()
        orchestrator = self._orchestrator()
        product_id = self.settings.product_id

        await orchestrator.init_connection()
        await self.load_premium_product_details()

        purchase = await orchestrator.purchase(product_id)
        await orchestrator.finalize_purchase(purchase)

        receipt_data = await orchestrator.fetch_receipt_data(purchase)
        if not receipt_data:
            raise ReceiptMissingError(PURCHASE_RECEIPT_MISSING_MESSAGE)

        return PremiumPurchase(
            product_id=purchase.product_id or product_id,
            transaction_id=resolve_transaction_id(purchase),
            transaction_date=format_transaction_date(purchase.transaction_date_ms),
            receipt_data=receipt_data,
        )

    async def restore_premium(self) -> PremiumPurchase | None:
        """
        Restore an active premium subscription.

        Returns None when the store has nothing to restore.

        Raises:
            IapUnavailableError: Native purchases unavailable outside dev mode
            ReceiptMissingError: A purchase was found but no receipt
        """
        if not self.native_available and self.settings.dev_mode:
            return self._fallback_purchase()
        orchestrator = self._orchestrator()
        product_id = self.settings.product_id

        await self.load_premium_product_details()
        purchase = await orchestrator.restore(product_id)
        if purchase is None:
            return None
        if not purchase.transaction_receipt:
            raise ReceiptMissingError(RESTORE_RECEIPT_MISSING_MESSAGE)

        return PremiumPurchase(
            product_id=purchase.product_id or product_id,
            transaction_id=resolve_transaction_id(purchase),
            transaction_date=format_transaction_date(purchase.transaction_date_ms),
            receipt_data=purchase.transaction_receipt,
        )

    async def end_connection(self) -> None:
        """Tear down the store connection."""
        if self.orchestrator is not None:
            await self.orchestrator.end_connection()
