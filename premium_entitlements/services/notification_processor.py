"""
Notification Processor - App Store Server Notifications V2 webhook.

Flow:
1. Parse the request body and extract ``signedPayload``
2. Verify the signature against Apple's key sets (production, then sandbox)
3. Decode the envelope and the nested transaction / renewal payloads
4. Derive the subscription status and rewrite the matching user's record

Once the signature verifies, every outcome is acknowledged so Apple stops
retrying, including notifications that match no user.
"""

import json
from dataclasses import dataclass
from datetime import datetime

from structlog import get_logger

from premium_entitlements.config import Settings
from premium_entitlements.db.repository import EntitlementRepository
from premium_entitlements.exceptions import ValidationError
from premium_entitlements.models.apple_storekit import (
    AppleNotification,
    AppleRenewalInfo,
    AppleTransactionInfo,
)
from premium_entitlements.models.domain import (
    NotificationStateChange,
    SubscriptionMatch,
    SubscriptionStatus,
)
from premium_entitlements.observability.metrics import metrics
from premium_entitlements.services.signature_verifier import (
    JwsSignatureVerifier,
    decode_jws_payload,
)

logger = get_logger(__name__)

FIXED_STATUS_BY_TYPE: dict[str, SubscriptionStatus] = {
    "EXPIRED": SubscriptionStatus.EXPIRED,
    "DID_REVOKE": SubscriptionStatus.REVOKED,
    "DID_FAIL_TO_RENEW": SubscriptionStatus.BILLING_RETRY,
    "GRACE_PERIOD": SubscriptionStatus.GRACE_PERIOD,
    "REFUND": SubscriptionStatus.REFUNDED,
    "REFUND_DECLINED": SubscriptionStatus.REFUND_DECLINED,
    "CONSUMPTION_REQUEST": SubscriptionStatus.CONSUMPTION_REQUESTED,
}


def status_for_notification(
    notification_type: str, expires_at: datetime | None, now: datetime
) -> SubscriptionStatus:
    """Map a notification type to the resulting subscription status."""
    fixed = FIXED_STATUS_BY_TYPE.get(notification_type)
    if fixed is not None:
        return fixed
    # An active record must carry an expiry that is still in the future
    if expires_at is not None and expires_at > now:
        return SubscriptionStatus.ACTIVE
    return SubscriptionStatus.EXPIRED


def extract_signed_payload(body: bytes) -> str:
    """Pull the ``signedPayload`` string out of a webhook body."""
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Request body must be JSON") from exc

    signed_payload = data.get("signedPayload") if isinstance(data, dict) else None
    if not isinstance(signed_payload, str) or not signed_payload:
        raise ValidationError("Missing signedPayload")
    return signed_payload


@dataclass(frozen=True)
class NotificationOutcome:
    """What the webhook did with one notification."""

    message: str
    notification_type: str
    matched: int = 0


class NotificationProcessor:
    """Applies verified App Store notifications to entitlement records."""

    def __init__(
        self,
        verifier: JwsSignatureVerifier,
        repository: EntitlementRepository,
        settings: Settings,
    ) -> None:
        self.verifier = verifier
        self.repository = repository
        self.settings = settings

    async def process(self, body: bytes, now: datetime) -> NotificationOutcome:
        """
        Verify and apply one notification.

        Raises:
            ValidationError: Body or signed payload is malformed
            SignatureInvalidError: No Apple key verifies the payload
            UpstreamUnavailableError: Apple's key sets could not be fetched
        """
        signed_payload = extract_signed_payload(body)

        if self.settings.allow_unverified_test_notifications:
            unverified = AppleNotification.from_payload(decode_jws_payload(signed_payload))
            if unverified.is_test():
                logger.warning(
                    "test_notification_accepted_unverified",
                    notification_uuid=unverified.notification_uuid,
                )
                return NotificationOutcome("Test notification received", "TEST")

        verified = await self.verifier.verify(signed_payload)
        notification = AppleNotification.from_payload(verified.payload)

        logger.info(
            "apple_notification_received",
            notification_type=notification.notification_type,
            subtype=notification.subtype,
            notification_uuid=notification.notification_uuid,
            key_set=verified.key_set,
            environment=notification.environment,
        )

        if notification.is_test():
            return NotificationOutcome("Test notification received", "TEST")

        if not notification.signed_transaction_info:
            logger.info(
                "notification_without_transaction",
                notification_type=notification.notification_type,
            )
            return NotificationOutcome("No transaction info", notification.notification_type)

        try:
            transaction = AppleTransactionInfo.from_payload(
                decode_jws_payload(notification.signed_transaction_info)
            )
            renewal = (
                AppleRenewalInfo.from_payload(decode_jws_payload(notification.signed_renewal_info))
                if notification.signed_renewal_info
                else None
            )
        except ValidationError as exc:
            logger.warning(
                "notification_transaction_malformed",
                notification_type=notification.notification_type,
                notification_uuid=notification.notification_uuid,
                error=exc.message,
            )
            return NotificationOutcome("Malformed transaction info", notification.notification_type)

        change = self._build_change(notification, transaction, renewal, now)
        match = SubscriptionMatch(
            app_account_token=transaction.app_account_token,
            original_transaction_id=transaction.original_transaction_id,
        )

        updated = await self.repository.update_by_subscription(match, change)
        metrics.record_notification(
            notification.notification_type, change.subscription_status.value, updated > 0
        )

        if updated == 0:
            logger.warning(
                "notification_unmatched",
                notification_type=notification.notification_type,
                app_account_token=match.app_account_token,
                original_transaction_id=match.original_transaction_id,
            )
            return NotificationOutcome("No matching user", notification.notification_type)

        logger.info(
            "notification_applied",
            notification_type=notification.notification_type,
            subscription_status=change.subscription_status.value,
            is_premium=change.is_premium,
            rows=updated,
        )
        return NotificationOutcome(
            "Notification processed", notification.notification_type, matched=updated
        )

    @staticmethod
    def _build_change(
        notification: AppleNotification,
        transaction: AppleTransactionInfo,
        renewal: AppleRenewalInfo | None,
        now: datetime,
    ) -> NotificationStateChange:
        expires_at = transaction.expires_at
        status = status_for_notification(notification.notification_type, expires_at, now)

        if renewal is not None:
            will_renew = renewal.will_renew()
        else:
            will_renew = transaction.auto_renew_status == 1

        revoked_at = None
        if status == SubscriptionStatus.REVOKED:
            revoked_at = transaction.revoked_at or now

        return NotificationStateChange(
            product_id=transaction.product_id,
            latest_transaction_id=transaction.transaction_id,
            original_transaction_id=transaction.original_transaction_id,
            environment=transaction.environment or notification.environment,
            premium_expires_at=expires_at,
            subscription_status=status,
            will_renew=will_renew,
            is_in_grace_period=status == SubscriptionStatus.GRACE_PERIOD,
            is_in_billing_retry=status == SubscriptionStatus.BILLING_RETRY,
            revoked_at=revoked_at,
            revocation_reason=transaction.revocation_reason,
            last_notification_at=notification.signed_date or now,
            last_notification_type=notification.notification_type,
        )
