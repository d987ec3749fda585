"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from premium_entitlements.models.domain import SubscriptionStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


SUBSCRIPTION_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in SubscriptionStatus)


class User(Base):
    """
    ORM model for the users table.

    Only the premium entitlement columns are managed here; the rest of the
    profile belongs to the application that owns the table.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Entitlement flag read by the app
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Apple subscription lineage
    apple_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    apple_latest_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    apple_original_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    apple_app_account_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    apple_environment: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Lifecycle
    premium_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    will_renew: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_in_grace_period: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_in_billing_retry: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revocation_reason: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Last App Store notification applied
    last_apple_notification_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_apple_notification_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            f"subscription_status IS NULL OR subscription_status IN ({SUBSCRIPTION_STATUS_VALUES})",
            name="ck_users_subscription_status",
        ),
        CheckConstraint(
            "subscription_status IS DISTINCT FROM 'active' OR premium_expires_at IS NOT NULL",
            name="ck_users_active_has_expiry",
        ),
        Index(
            "idx_users_apple_original_tx_id",
            "apple_original_transaction_id",
            postgresql_where=(apple_original_transaction_id.isnot(None)),
        ),
        Index(
            "idx_users_apple_app_account_token",
            "apple_app_account_token",
            postgresql_where=(apple_app_account_token.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(id={self.id}, is_premium={self.is_premium}, "
            f"subscription_status={self.subscription_status})>"
        )
