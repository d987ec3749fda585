"""
Tests for the HTTP surface: premium status, App Store webhook, account deletion.

Services are replaced through dependency_overrides; only authentication is
exercised for real in TestAuthentication.
"""

import time
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import jwt
import pytest

from premium_entitlements.api.dependencies import (
    AuthenticatedUser,
    decode_access_token,
    get_current_user,
    get_entitlement_service,
    get_notification_processor,
    get_repository,
)
from premium_entitlements.config import ConfigurationError, Settings, get_settings
from premium_entitlements.db.session import get_read_db
from premium_entitlements.exceptions import (
    AuthenticationError,
    ExpiredEntitlementError,
    MissingExpirationError,
    NoActiveSubscriptionError,
    ReceiptStatusError,
    RepositoryError,
    SignatureInvalidError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.models.domain import ResolvedEntitlement
from premium_entitlements.services.notification_processor import NotificationOutcome

USER_ID = UUID("12345678-1234-5678-1234-567812345678")
JWT_SECRET = "test-secret-key-for-jwt-signing-min-32-chars"


@pytest.fixture
def service() -> MagicMock:
    mock = MagicMock()
    mock.verify_entitlement = AsyncMock()
    mock.set_entitlement = AsyncMock()
    return mock


@pytest.fixture
def processor() -> MagicMock:
    mock = MagicMock()
    mock.process = AsyncMock(
        return_value=NotificationOutcome("Notification processed", "DID_RENEW", matched=1)
    )
    return mock


@pytest.fixture
def api(app, client, service, processor, repository):
    """Client with auth and services overridden."""

    async def override_user():
        return AuthenticatedUser(user_id=USER_ID)

    async def override_service():
        return service

    async def override_processor():
        return processor

    async def override_repository():
        return repository

    app.dependency_overrides[get_current_user] = override_user
    app.dependency_overrides[get_entitlement_service] = override_service
    app.dependency_overrides[get_notification_processor] = override_processor
    app.dependency_overrides[get_repository] = override_repository
    return client


class TestPremiumStatus:
    def test_grants_premium(self, api, service):
        service.verify_entitlement.return_value = ResolvedEntitlement(
            user_id=USER_ID,
            product_id="premium",
            transaction_id="2000",
            original_transaction_id="1000",
            environment="Sandbox",
            expires_at=datetime(2024, 1, 15, 12, 1, 0, tzinfo=UTC),
        )

        response = api.post(
            "/v1/premium/status",
            json={
                "isPremium": True,
                "receiptData": "receipt",
                "productId": "premium",
                "transactionId": "2000",
                "appAccountToken": "token-1",
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "isPremium": True,
            "productId": "premium",
            "transactionId": "2000",
            "environment": "Sandbox",
            "expiresAt": "2024-01-15T12:01:00.000Z",
        }
        kwargs = service.verify_entitlement.call_args.kwargs
        assert kwargs["user_id"] == USER_ID
        assert kwargs["receipt_data"] == "receipt"
        assert kwargs["app_account_token"] == "token-1"

    def test_clears_premium(self, api, service):
        response = api.post("/v1/premium/status", json={"isPremium": False})

        assert response.status_code == 200
        assert response.json()["isPremium"] is False
        service.set_entitlement.assert_awaited_once_with(USER_ID, False)
        service.verify_entitlement.assert_not_awaited()

    @pytest.mark.parametrize(
        "error,status_code,detail",
        [
            (ValidationError("receiptData is required"), 400, "receiptData is required"),
            (
                ValidationError("Invalid receipt data type received from client."),
                400,
                "Invalid receipt data type received from client.",
            ),
            (
                ConfigurationError("APPLE_IAP_SHARED_SECRET is not configured."),
                500,
                "Receipt verification is not configured",
            ),
            (
                UpstreamUnavailableError("apple_verify_receipt", "timeout"),
                502,
                "Unable to reach Apple verification service",
            ),
            (
                ReceiptStatusError(21004, "The shared secret is invalid."),
                422,
                "The shared secret is invalid.",
            ),
            (
                NoActiveSubscriptionError("premium"),
                422,
                "Apple did not return an active subscription for this product.",
            ),
            (
                MissingExpirationError("premium"),
                422,
                "Apple receipt is missing an expiration date.",
            ),
            (
                ExpiredEntitlementError("premium", 1705319940000),
                402,
                "Subscription has expired. Renew via Apple and try again.",
            ),
            (RepositoryError("db down"), 500, "Failed to update premium status"),
        ],
    )
    def test_error_mapping(self, api, service, error, status_code, detail):
        service.verify_entitlement.side_effect = error

        response = api.post(
            "/v1/premium/status",
            json={"isPremium": True, "receiptData": "receipt", "productId": "premium"},
        )

        assert response.status_code == status_code
        assert response.json()["detail"] == detail

    def test_non_string_receipt_reaches_service(self, api, service):
        service.verify_entitlement.side_effect = ValidationError(
            "Invalid receipt data type received from client."
        )

        response = api.post(
            "/v1/premium/status",
            json={"isPremium": True, "receiptData": {"nested": 1}, "productId": "premium"},
        )

        assert response.status_code == 400
        assert service.verify_entitlement.call_args.kwargs["receipt_data"] == {"nested": 1}


class TestNotificationWebhook:
    def test_acknowledges(self, api, processor):
        response = api.post("/v1/iap/notifications", json={"signedPayload": "a.b.c"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "message": "Notification processed"}
        body = processor.process.call_args.args[0]
        assert b"a.b.c" in body

    def test_unmatched_still_acknowledged(self, api, processor):
        processor.process.return_value = NotificationOutcome("No matching user", "EXPIRED")

        response = api.post("/v1/iap/notifications", json={"signedPayload": "a.b.c"})

        assert response.status_code == 200
        assert response.json()["message"] == "No matching user"

    @pytest.mark.parametrize(
        "error,status_code,detail",
        [
            (ValidationError("Missing signedPayload"), 400, "Missing signedPayload"),
            (SignatureInvalidError("no key"), 401, "Invalid notification signature"),
            (
                UpstreamUnavailableError("apple_jwks", "timeout"),
                503,
                "Unable to verify notification",
            ),
            (RepositoryError("db down"), 500, "Notification processing failed"),
        ],
    )
    def test_error_mapping(self, api, processor, error, status_code, detail):
        processor.process.side_effect = error

        response = api.post("/v1/iap/notifications", json={"signedPayload": "a.b.c"})

        assert response.status_code == status_code
        assert response.json()["detail"] == detail

    def test_get_not_allowed(self, api, processor):
        response = api.get("/v1/iap/notifications")

        assert response.status_code == 405
        processor.process.assert_not_awaited()

    def test_no_user_auth_required(self, app, client, processor):
        async def override_processor():
            return processor

        app.dependency_overrides[get_notification_processor] = override_processor

        response = client.post("/v1/iap/notifications", json={"signedPayload": "a.b.c"})

        assert response.status_code == 200


class TestDeleteAccount:
    def test_deletes_user(self, api, repository):
        response = api.delete("/v1/users/me")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        repository.delete_user.assert_awaited_once_with(USER_ID)

    def test_failure(self, api, repository):
        repository.delete_user.side_effect = RepositoryError("db down")

        response = api.delete("/v1/users/me")

        assert response.status_code == 500


class TestHealth:
    def test_healthy(self, app, client):
        session = AsyncMock()

        async def override_read_db():
            yield session

        app.dependency_overrides[get_read_db] = override_read_db

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_unhealthy(self, app, client):
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=RuntimeError("connection refused"))

        async def override_read_db():
            yield session

        app.dependency_overrides[get_read_db] = override_read_db

        response = client.get("/health")

        assert response.status_code == 503


def make_token(**overrides) -> str:
    now = int(time.time())
    claims = {"sub": str(USER_ID), "aud": "authenticated", "iat": now, "exp": now + 600}
    claims.update(overrides)
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


class TestAuthentication:
    @pytest.fixture
    def auth_settings(self) -> Settings:
        return Settings(auth_jwt_secret=JWT_SECRET)

    def test_decodes_valid_token(self, auth_settings):
        user = decode_access_token(make_token(email="a@example.com"), auth_settings)
        assert user.user_id == USER_ID
        assert user.email == "a@example.com"

    def test_expired_token(self, auth_settings):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(make_token(exp=int(time.time()) - 60), auth_settings)
        assert exc_info.value.message == "Token expired"

    def test_wrong_audience(self, auth_settings):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(make_token(aud="someone-else"), auth_settings)
        assert exc_info.value.message == "Invalid token"

    def test_audience_check_disabled(self):
        settings = Settings(auth_jwt_secret=JWT_SECRET, auth_jwt_audience=None)
        token = make_token()
        assert decode_access_token(token, settings).user_id == USER_ID

    def test_non_uuid_subject(self, auth_settings):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(make_token(sub="user-42"), auth_settings)
        assert exc_info.value.message == "Token subject is not a user id"

    def test_missing_header_is_401(self, client):
        response = client.post("/v1/premium/status", json={"isPremium": False})
        assert response.status_code == 401

    def test_bad_token_is_401(self, client):
        response = client.delete(
            "/v1/users/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_valid_token_reaches_route(self, app, client, repository, auth_settings):
        async def override_repository():
            return repository

        app.dependency_overrides[get_repository] = override_repository
        app.dependency_overrides[get_settings] = lambda: auth_settings

        response = client.delete(
            "/v1/users/me", headers={"Authorization": f"Bearer {make_token()}"}
        )

        assert response.status_code == 200
        repository.delete_user.assert_awaited_once_with(USER_ID)
