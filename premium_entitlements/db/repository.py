"""
Entitlement Repository - persistence of premium state on the users table.

NO DICTIONARIES - Writes take EntitlementRecord / NotificationStateChange models.
"""

from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, or_, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from premium_entitlements.db.models import User, utc_now
from premium_entitlements.exceptions import RepositoryError
from premium_entitlements.models.domain import (
    EntitlementRecord,
    NotificationStateChange,
    SubscriptionMatch,
)

logger = get_logger(__name__)


class EntitlementRepository(Protocol):
    """Store consumed by the entitlement resolver and notification processor."""

    async def update_premium_metadata(self, user_id: UUID, record: EntitlementRecord) -> None:
        """Overwrite every premium column for ``user_id``."""
        ...

    async def update_by_subscription(
        self, match: SubscriptionMatch, change: NotificationStateChange
    ) -> int:
        """Apply a notification to the matching user. Returns rows updated."""
        ...

    async def delete_user(self, user_id: UUID) -> None:
        """Remove the user and with it the entitlement record."""
        ...


def _record_columns(record: EntitlementRecord) -> dict[str, Any]:
    return {
        "is_premium": record.is_premium,
        "apple_product_id": record.product_id,
        "apple_latest_transaction_id": record.latest_transaction_id,
        "apple_original_transaction_id": record.original_transaction_id,
        "apple_app_account_token": record.app_account_token,
        "apple_environment": record.environment,
        "premium_expires_at": record.premium_expires_at,
        "subscription_status": (
            record.subscription_status.value if record.subscription_status else None
        ),
        "will_renew": record.will_renew,
        "is_in_grace_period": record.is_in_grace_period,
        "is_in_billing_retry": record.is_in_billing_retry,
        "revoked_at": record.revoked_at,
        "revocation_reason": record.revocation_reason,
        "last_apple_notification_at": record.last_notification_at,
        "last_apple_notification_type": record.last_notification_type,
        "updated_at": utc_now(),
    }


def _change_columns(change: NotificationStateChange) -> dict[str, Any]:
    columns: dict[str, Any] = {
        "is_premium": change.is_premium,
        "apple_product_id": change.product_id,
        "apple_latest_transaction_id": change.latest_transaction_id,
        "apple_environment": change.environment,
        "premium_expires_at": change.premium_expires_at,
        "subscription_status": change.subscription_status.value,
        "will_renew": change.will_renew,
        "is_in_grace_period": change.is_in_grace_period,
        "is_in_billing_retry": change.is_in_billing_retry,
        "revoked_at": change.revoked_at,
        "revocation_reason": change.revocation_reason,
        "last_apple_notification_at": change.last_notification_at,
        "last_apple_notification_type": change.last_notification_type,
        "updated_at": utc_now(),
    }
    # Keep the stored lineage when the notification omits it
    if change.original_transaction_id:
        columns["apple_original_transaction_id"] = change.original_transaction_id
    return columns


class UsersRepository:
    """SQLAlchemy implementation of EntitlementRepository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def update_premium_metadata(self, user_id: UUID, record: EntitlementRecord) -> None:
        """Upsert the premium columns for one user in a single statement."""
        columns = _record_columns(record)
        stmt = (
            insert(User)
            .values(id=user_id, **columns)
            .on_conflict_do_update(index_elements=[User.id], set_=columns)
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("update_premium_metadata_failed", user_id=str(user_id), error=str(exc))
            raise RepositoryError("Failed to update premium metadata") from exc

        logger.info(
            "premium_metadata_updated",
            user_id=str(user_id),
            is_premium=record.is_premium,
            subscription_status=columns["subscription_status"],
        )

    async def update_by_subscription(
        self, match: SubscriptionMatch, change: NotificationStateChange
    ) -> int:
        """
        Apply a notification to the user owning the subscription.

        The app account token is authoritative when present. The original
        transaction id is only consulted when no token was supplied.
        """
        if match.is_empty():
            return 0

        if match.app_account_token:
            condition = User.apple_app_account_token == match.app_account_token
            token_as_id = _parse_uuid(match.app_account_token)
            if token_as_id is not None:
                condition = or_(condition, User.id == token_as_id)
        else:
            condition = User.apple_original_transaction_id == match.original_transaction_id

        stmt = update(User).where(condition).values(**_change_columns(change))
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "update_by_subscription_failed",
                app_account_token=match.app_account_token,
                original_transaction_id=match.original_transaction_id,
                error=str(exc),
            )
            raise RepositoryError("Failed to apply subscription notification") from exc

        return int(result.rowcount or 0)

    async def delete_user(self, user_id: UUID) -> None:
        """Delete the user row."""
        try:
            await self.session.execute(delete(User).where(User.id == user_id))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("delete_user_failed", user_id=str(user_id), error=str(exc))
            raise RepositoryError("Failed to delete user") from exc

        logger.info("user_deleted", user_id=str(user_id))


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None
