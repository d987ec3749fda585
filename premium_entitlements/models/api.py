"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Field aliases keep the camelCase wire format used by the mobile client.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PremiumStatusRequest(BaseModel):
    """POST /v1/premium/status request body.

    ``receipt_data`` is typed loosely so that a non-string receipt reaches the
    entitlement service and is rejected there with a clear message.
    """

    model_config = ConfigDict(populate_by_name=True)

    is_premium: bool = Field(default=False, alias="isPremium")
    receipt_data: Any = Field(default=None, alias="receiptData")
    product_id: str | None = Field(default=None, alias="productId", max_length=255)
    transaction_id: str | None = Field(default=None, alias="transactionId", max_length=255)
    app_account_token: str | None = Field(default=None, alias="appAccountToken", max_length=255)


class PremiumStatusResponse(BaseModel):
    """POST /v1/premium/status response."""

    model_config = ConfigDict(populate_by_name=True)

    is_premium: bool = Field(alias="isPremium")
    product_id: str | None = Field(default=None, alias="productId")
    transaction_id: str | None = Field(default=None, alias="transactionId")
    environment: str | None = None
    expires_at: str | None = Field(default=None, alias="expiresAt")


class NotificationAck(BaseModel):
    """Webhook acknowledgment body."""

    ok: bool = True
    message: str


class DeleteAccountResponse(BaseModel):
    """DELETE /v1/users/me response."""

    ok: bool = True


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
