"""
Apple StoreKit domain models - Immutable dataclasses for purchase verification.

NO DICTIONARIES - All data uses strongly typed models.

Two Apple surfaces feed these models:
- the legacy verifyReceipt endpoint (receipt entries keyed in snake_case)
- App Store Server Notifications V2 (JWS payloads keyed in camelCase)
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from premium_entitlements.models.domain import millis_to_datetime


class AppleReceiptStatus(IntEnum):
    """Status codes returned by verifyReceipt."""

    VALID = 0
    BAD_REQUEST = 21000
    MALFORMED_RECEIPT = 21002
    NOT_AUTHENTICATED = 21003
    INVALID_SHARED_SECRET = 21004
    SERVER_UNAVAILABLE = 21005
    SUBSCRIPTION_EXPIRED = 21006
    SANDBOX_RECEIPT_ON_PRODUCTION = 21007
    PRODUCTION_RECEIPT_ON_SANDBOX = 21008


RECEIPT_STATUS_MESSAGES: dict[AppleReceiptStatus, str] = {
    AppleReceiptStatus.BAD_REQUEST: "Apple could not process this receipt request.",
    AppleReceiptStatus.MALFORMED_RECEIPT: "Apple rejected the receipt payload as malformed.",
    AppleReceiptStatus.NOT_AUTHENTICATED: "Apple could not authenticate this receipt.",
    AppleReceiptStatus.INVALID_SHARED_SECRET: "The shared secret is invalid.",
    AppleReceiptStatus.SERVER_UNAVAILABLE: "Receipt is temporarily unavailable. Try again shortly.",
    AppleReceiptStatus.SUBSCRIPTION_EXPIRED: "This subscription has expired.",
    AppleReceiptStatus.SANDBOX_RECEIPT_ON_PRODUCTION: (
        "Sandbox receipt sent to production environment."
    ),
    AppleReceiptStatus.PRODUCTION_RECEIPT_ON_SANDBOX: (
        "Production receipt sent to sandbox environment."
    ),
}


def describe_receipt_status(status: int) -> str:
    """User-facing message for a verifyReceipt status code."""
    try:
        known = AppleReceiptStatus(status)
    except ValueError:
        return f"Apple returned status {status}."
    return RECEIPT_STATUS_MESSAGES.get(known, f"Apple returned status {status}.")


def _parse_millis(value: Any) -> int | None:
    """Apple sends millisecond timestamps as strings in receipts and ints in JWS."""
    if value is None or value == "":
        return None
    try:
        ms = int(value)
    except (TypeError, ValueError):
        return None
    return ms if ms > 0 else None


def _parse_apple_date(value: str | None) -> datetime | None:
    """Parse ``expires_date`` in ISO or Apple's ``YYYY-MM-DD HH:MM:SS Etc/GMT`` form."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(" Etc/GMT"):
        try:
            parsed = datetime.strptime(text[: -len(" Etc/GMT")], "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
        return parsed.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class ReceiptTransactionEntry:
    """One transaction from ``latest_receipt_info`` or ``receipt.in_app``."""

    product_id: str | None
    transaction_id: str | None
    original_transaction_id: str | None
    expires_at_ms: int | None
    expires_date: str | None = None
    purchase_date_ms: int | None = None

    @classmethod
    def from_receipt_info(cls, data: dict[str, Any]) -> "ReceiptTransactionEntry":
        """Build an entry from Apple's snake_case receipt dictionary."""
        return cls(
            product_id=data.get("product_id"),
            transaction_id=data.get("transaction_id"),
            original_transaction_id=data.get("original_transaction_id"),
            expires_at_ms=_parse_millis(data.get("expires_date_ms")),
            expires_date=data.get("expires_date"),
            purchase_date_ms=_parse_millis(data.get("purchase_date_ms")),
        )

    def comparison_timestamp(self) -> int:
        """Timestamp used to rank renewals of the same product."""
        return self.expires_at_ms or self.purchase_date_ms or 0

    def resolve_expiration(self) -> datetime | None:
        """Expiration from ``expires_date_ms``, falling back to ``expires_date``."""
        if self.expires_at_ms is not None:
            return millis_to_datetime(self.expires_at_ms)
        return _parse_apple_date(self.expires_date)


@dataclass(frozen=True)
class ReceiptVerificationResult:
    """Parsed verifyReceipt response. Consumed once, never persisted."""

    status: int
    environment: str | None
    transaction_entries: tuple[ReceiptTransactionEntry, ...]

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "ReceiptVerificationResult":
        """Merge ``latest_receipt_info`` with ``receipt.in_app``."""
        latest = data.get("latest_receipt_info") or []
        receipt = data.get("receipt") or {}
        in_app = receipt.get("in_app") or [] if isinstance(receipt, dict) else []
        entries = tuple(
            ReceiptTransactionEntry.from_receipt_info(item)
            for item in [*latest, *in_app]
            if isinstance(item, dict)
        )
        return cls(
            status=int(data.get("status", -1)),
            environment=data.get("environment"),
            transaction_entries=entries,
        )

    def entries_for_product(self, product_id: str) -> list[ReceiptTransactionEntry]:
        """Entries whose product id equals ``product_id``."""
        return [entry for entry in self.transaction_entries if entry.product_id == product_id]


@dataclass(frozen=True)
class AppleTransactionInfo:
    """Decoded ``signedTransactionInfo`` from a notification."""

    transaction_id: str | None
    original_transaction_id: str | None
    product_id: str | None
    expires_at_ms: int | None = None
    app_account_token: str | None = None
    environment: str | None = None
    revocation_date_ms: int | None = None
    revocation_reason: int | None = None
    auto_renew_status: int | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AppleTransactionInfo":
        """Build from the decoded JWS payload."""
        return cls(
            transaction_id=_as_str(data.get("transactionId")),
            original_transaction_id=_as_str(data.get("originalTransactionId")),
            product_id=data.get("productId"),
            expires_at_ms=_parse_millis(data.get("expiresDate")),
            app_account_token=data.get("appAccountToken") or None,
            environment=data.get("environment"),
            revocation_date_ms=_parse_millis(data.get("revocationDate")),
            revocation_reason=data.get("revocationReason"),
            auto_renew_status=data.get("autoRenewStatus"),
        )

    @property
    def expires_at(self) -> datetime | None:
        return millis_to_datetime(self.expires_at_ms)

    @property
    def revoked_at(self) -> datetime | None:
        return millis_to_datetime(self.revocation_date_ms)


@dataclass(frozen=True)
class AppleRenewalInfo:
    """Decoded ``signedRenewalInfo`` from a notification."""

    original_transaction_id: str | None
    product_id: str | None
    auto_renew_status: int  # 0: off, 1: on
    is_in_billing_retry_period: bool = False
    grace_period_expires_at_ms: int | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AppleRenewalInfo":
        """Build from the decoded JWS payload."""
        return cls(
            original_transaction_id=_as_str(data.get("originalTransactionId")),
            product_id=data.get("autoRenewProductId") or data.get("productId"),
            auto_renew_status=int(data.get("autoRenewStatus", 0) or 0),
            is_in_billing_retry_period=bool(data.get("isInBillingRetryPeriod", False)),
            grace_period_expires_at_ms=_parse_millis(data.get("gracePeriodExpiresDate")),
        )

    def will_renew(self) -> bool:
        """Check if subscription will auto-renew."""
        return self.auto_renew_status == 1


@dataclass(frozen=True)
class AppleNotification:
    """App Store Server Notification V2 envelope.

    Notification types that change entitlement state:
    - DID_RENEW / PRICE_INCREASE: active while the transaction is unexpired
    - DID_FAIL_TO_RENEW: billing retry
    - GRACE_PERIOD: billing grace period
    - EXPIRED, DID_REVOKE, REFUND, REFUND_DECLINED, CONSUMPTION_REQUEST
    - TEST: connectivity ping
    """

    notification_type: str
    subtype: str | None
    notification_uuid: str | None
    signed_date_ms: int | None
    environment: str | None
    signed_transaction_info: str | None
    signed_renewal_info: str | None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AppleNotification":
        """Build from the decoded outer JWS payload."""
        inner = data.get("data") or {}
        return cls(
            notification_type=str(data.get("notificationType", "")),
            subtype=data.get("subtype"),
            notification_uuid=data.get("notificationUUID"),
            signed_date_ms=_parse_millis(data.get("signedDate")),
            environment=inner.get("environment"),
            signed_transaction_info=inner.get("signedTransactionInfo"),
            signed_renewal_info=inner.get("signedRenewalInfo"),
        )

    def is_test(self) -> bool:
        """Check if this is a test notification."""
        return self.notification_type == "TEST"

    @property
    def signed_date(self) -> datetime | None:
        return millis_to_datetime(self.signed_date_ms)


@dataclass(frozen=True)
class AppleStoreKitConfig:
    """App Store Connect API key used to sign developer assertions."""

    key_id: str  # Key ID from App Store Connect
    issuer_id: str  # Issuer ID from App Store Connect
    private_key: str  # Private key (.p8 contents)
    bundle_id: str  # App bundle ID
    environment: str  # "production" or "sandbox"

    @property
    def api_base_url(self) -> str:
        """Get the App Store Server API base URL for the configured environment."""
        if self.environment.lower() == "sandbox":
            return "https://api.storekit-sandbox.itunes.apple.com"
        return "https://api.storekit.itunes.apple.com"

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.key_id:
            raise ValueError("StoreKit key_id is required")
        if not self.issuer_id:
            raise ValueError("StoreKit issuer_id is required")
        if not self.private_key:
            raise ValueError("StoreKit private_key is required")
        if not self.bundle_id:
            raise ValueError("StoreKit bundle_id is required")
        if self.environment.lower() not in ("production", "sandbox"):
            raise ValueError("Environment must be 'production' or 'sandbox'")


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
