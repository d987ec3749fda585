"""
Entitlement Service - turns a verified App Store receipt into premium access.

NO DICTIONARIES - Results and persisted state use typed domain models.
"""

import time
from datetime import datetime
from typing import Any
from uuid import UUID

from structlog import get_logger

from premium_entitlements.db.repository import EntitlementRepository
from premium_entitlements.exceptions import (
    ExpiredEntitlementError,
    MissingExpirationError,
    NoActiveSubscriptionError,
    ReceiptStatusError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.models.apple_storekit import ReceiptTransactionEntry
from premium_entitlements.models.domain import (
    EntitlementRecord,
    ResolvedEntitlement,
    SubscriptionStatus,
)
from premium_entitlements.observability.metrics import metrics
from premium_entitlements.observability.tracing import trace_operation
from premium_entitlements.services.receipt_client import AppleReceiptClient

logger = get_logger(__name__)


def select_latest_entry(entries: list[ReceiptTransactionEntry]) -> ReceiptTransactionEntry:
    """Entry with the greatest expiry (or purchase) timestamp. Earlier entries win ties."""
    latest = entries[0]
    for entry in entries[1:]:
        if entry.comparison_timestamp() > latest.comparison_timestamp():
            latest = entry
    return latest


class EntitlementService:
    """
    Resolves and persists a user's premium entitlement.

    The repository is written only after Apple has confirmed an unexpired
    subscription for the requested product.
    """

    def __init__(self, repository: EntitlementRepository, receipt_client: AppleReceiptClient):
        self.repository = repository
        self.receipt_client = receipt_client

    async def verify_entitlement(
        self,
        user_id: UUID,
        receipt_data: Any,
        product_id: str | None,
        now: datetime,
        transaction_id: str | None = None,
        app_account_token: str | None = None,
    ) -> ResolvedEntitlement:
        """
        Verify a receipt with Apple and grant premium access.

        Args:
            user_id: Authenticated user
            receipt_data: Base64 receipt from the client
            product_id: Subscription product to look for in the receipt
            now: Reference time for the expiry check
            transaction_id: Client-reported transaction id, used when the receipt lacks one
            app_account_token: Correlation id later matched against notifications

        Raises:
            ValidationError: Missing or malformed input
            UpstreamUnavailableError: Apple unreachable
            ReceiptStatusError: Apple rejected the receipt
            NoActiveSubscriptionError: Receipt has no entry for product_id
            MissingExpirationError: Selected entry has no expiry
            ExpiredEntitlementError: Subscription expired at or before ``now``
        """
        if receipt_data is not None and not isinstance(receipt_data, str):
            raise ValidationError("Invalid receipt data type received from client.")
        receipt_data = receipt_data.strip() if receipt_data else receipt_data
        product_id = product_id.strip() if product_id else product_id
        if not receipt_data:
            raise ValidationError("receiptData is required")
        if not product_id:
            raise ValidationError("productId is required")

        start = time.time()
        with trace_operation("verify_entitlement", product_id=product_id) as span:
            try:
                result = await self.receipt_client.verify_receipt(receipt_data)
            except UpstreamUnavailableError:
                metrics.record_receipt_verification("upstream_error", time.time() - start)
                raise
            except ReceiptStatusError as exc:
                metrics.record_receipt_verification("rejected", time.time() - start)
                logger.warning(
                    "receipt_rejected", user_id=str(user_id), status=exc.status, message=exc.message
                )
                raise

            span.set_attribute("apple.environment", result.environment or "unknown")

            entries = result.entries_for_product(product_id)
            if not entries:
                metrics.record_receipt_verification("no_subscription", time.time() - start)
                logger.warning(
                    "no_subscription_in_receipt",
                    user_id=str(user_id),
                    product_id=product_id,
                    entries=len(result.transaction_entries),
                )
                raise NoActiveSubscriptionError(product_id)

            latest = select_latest_entry(entries)
            expires_at = latest.resolve_expiration()
            if expires_at is None:
                metrics.record_receipt_verification("missing_expiration", time.time() - start)
                raise MissingExpirationError(product_id)

            if expires_at <= now:
                metrics.record_receipt_verification("expired", time.time() - start)
                logger.info(
                    "subscription_expired",
                    user_id=str(user_id),
                    product_id=product_id,
                    expires_at=expires_at.isoformat(),
                )
                raise ExpiredEntitlementError(product_id, int(expires_at.timestamp() * 1000))

            original_transaction_id = (
                latest.original_transaction_id or transaction_id or latest.transaction_id
            )
            latest_transaction_id = latest.transaction_id or original_transaction_id

            record = EntitlementRecord(
                is_premium=True,
                product_id=product_id,
                latest_transaction_id=latest_transaction_id,
                original_transaction_id=original_transaction_id,
                app_account_token=app_account_token,
                environment=result.environment,
                premium_expires_at=expires_at,
                subscription_status=SubscriptionStatus.ACTIVE,
                will_renew=True,
                is_in_grace_period=False,
                is_in_billing_retry=False,
            )
            await self.repository.update_premium_metadata(user_id, record)

        metrics.record_receipt_verification("verified", time.time() - start)
        logger.info(
            "entitlement_granted",
            user_id=str(user_id),
            product_id=product_id,
            transaction_id=latest_transaction_id,
            environment=result.environment,
            expires_at=expires_at.isoformat(),
        )

        return ResolvedEntitlement(
            user_id=user_id,
            product_id=product_id,
            transaction_id=latest_transaction_id,
            original_transaction_id=original_transaction_id,
            environment=result.environment,
            expires_at=expires_at,
        )

    async def set_entitlement(self, user_id: UUID, is_premium: bool) -> None:
        """
        Clear premium access.

        Granting requires a receipt, so only ``is_premium=False`` is accepted here.
        """
        if is_premium:
            raise ValidationError("receiptData is required")
        await self.repository.update_premium_metadata(user_id, EntitlementRecord.cleared())
        logger.info("entitlement_cleared", user_id=str(user_id))
