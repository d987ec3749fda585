"""
Domain Models - Internal entitlement models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID


class SubscriptionStatus(str, Enum):
    """Lifecycle state of a user's premium subscription."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"
    GRACE_PERIOD = "grace_period"
    BILLING_RETRY = "billing_retry"
    REFUNDED = "refunded"
    REFUND_DECLINED = "refund_declined"
    CONSUMPTION_REQUESTED = "consumption_requested"


def millis_to_datetime(ms: int | None) -> datetime | None:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def to_iso_millis(value: datetime) -> str:
    """Format a datetime as ISO-8601 with millisecond precision and a Z suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class EntitlementRecord:
    """Persisted premium state for one user.

    Every field maps to a column on the users table. ``None`` means "cleared".
    """

    is_premium: bool
    product_id: str | None = None
    latest_transaction_id: str | None = None
    original_transaction_id: str | None = None
    app_account_token: str | None = None
    environment: str | None = None
    premium_expires_at: datetime | None = None
    subscription_status: SubscriptionStatus | None = None
    will_renew: bool | None = None
    is_in_grace_period: bool | None = None
    is_in_billing_retry: bool | None = None
    revoked_at: datetime | None = None
    revocation_reason: int | None = None
    last_notification_at: datetime | None = None
    last_notification_type: str | None = None

    def __post_init__(self) -> None:
        """An active record must carry its expiration."""
        if self.subscription_status == SubscriptionStatus.ACTIVE and self.premium_expires_at is None:
            raise ValueError("Active entitlement requires premium_expires_at")

    @classmethod
    def cleared(cls) -> "EntitlementRecord":
        """Record with every premium field reset."""
        return cls(is_premium=False)


@dataclass(frozen=True)
class ResolvedEntitlement:
    """Outcome of a successful receipt verification."""

    user_id: UUID
    product_id: str
    transaction_id: str | None
    original_transaction_id: str | None
    environment: str | None
    expires_at: datetime


@dataclass(frozen=True)
class SubscriptionMatch:
    """Keys used to find the user a notification belongs to."""

    app_account_token: str | None
    original_transaction_id: str | None

    def is_empty(self) -> bool:
        """True when there is nothing to match on."""
        return not self.app_account_token and not self.original_transaction_id


@dataclass(frozen=True)
class NotificationStateChange:
    """Columns rewritten by a single App Store notification."""

    product_id: str | None
    latest_transaction_id: str | None
    original_transaction_id: str | None
    environment: str | None
    premium_expires_at: datetime | None
    subscription_status: SubscriptionStatus
    will_renew: bool
    is_in_grace_period: bool
    is_in_billing_retry: bool
    revoked_at: datetime | None
    revocation_reason: int | None
    last_notification_at: datetime
    last_notification_type: str

    @property
    def is_premium(self) -> bool:
        """Premium access follows the active status only."""
        return self.subscription_status == SubscriptionStatus.ACTIVE
