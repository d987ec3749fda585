"""create users table with premium entitlement columns

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Adds the users table holding:
- the is_premium flag read by the app
- Apple subscription lineage (product, transaction ids, app account token)
- lifecycle state written by receipt verification and App Store notifications
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

SUBSCRIPTION_STATUSES = (
    "active",
    "expired",
    "revoked",
    "grace_period",
    "billing_retry",
    "refunded",
    "refund_declined",
    "consumption_requested",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("apple_product_id", sa.String(length=255), nullable=True),
        sa.Column("apple_latest_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("apple_original_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("apple_app_account_token", sa.String(length=255), nullable=True),
        sa.Column("apple_environment", sa.String(length=50), nullable=True),
        sa.Column("premium_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_status", sa.String(length=32), nullable=True),
        sa.Column("will_renew", sa.Boolean(), nullable=True),
        sa.Column("is_in_grace_period", sa.Boolean(), nullable=True),
        sa.Column("is_in_billing_retry", sa.Boolean(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Integer(), nullable=True),
        sa.Column("last_apple_notification_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_apple_notification_type", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "subscription_status IS NULL OR subscription_status IN ("
            + ", ".join(f"'{status}'" for status in SUBSCRIPTION_STATUSES)
            + ")",
            name="ck_users_subscription_status",
        ),
        sa.CheckConstraint(
            "subscription_status IS DISTINCT FROM 'active' OR premium_expires_at IS NOT NULL",
            name="ck_users_active_has_expiry",
        ),
    )

    # Notification matching
    op.create_index(
        "idx_users_apple_original_tx_id",
        "users",
        ["apple_original_transaction_id"],
        postgresql_where=sa.text("apple_original_transaction_id IS NOT NULL"),
    )
    op.create_index(
        "idx_users_apple_app_account_token",
        "users",
        ["apple_app_account_token"],
        postgresql_where=sa.text("apple_app_account_token IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("idx_users_apple_app_account_token", table_name="users")
    op.drop_index("idx_users_apple_original_tx_id", table_name="users")
    op.drop_table("users")
