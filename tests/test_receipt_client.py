"""
Tests for the verifyReceipt client.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from premium_entitlements.config import ConfigurationError, Settings
from premium_entitlements.exceptions import (
    ReceiptStatusError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.services.receipt_client import AppleReceiptClient
from tests.conftest import make_response

PRODUCTION_URL = "https://buy.example/verifyReceipt"
SANDBOX_URL = "https://sandbox.example/verifyReceipt"


@pytest.fixture
def client() -> AppleReceiptClient:
    return AppleReceiptClient("secret", PRODUCTION_URL, SANDBOX_URL, timeout=5.0)


def apple_body(status: int, environment: str = "Production", **extra) -> dict:
    return {"status": status, "environment": environment, **extra}


class TestVerifyReceipt:
    async def test_posts_receipt_to_production(self, client, mock_httpx):
        mock_httpx.post = AsyncMock(return_value=make_response(200, apple_body(0)))

        result = await client.verify_receipt("base64-receipt")

        assert result.status == 0
        url = mock_httpx.post.call_args.args[0]
        body = mock_httpx.post.call_args.kwargs["json"]
        assert url == PRODUCTION_URL
        assert body == {
            "receipt-data": "base64-receipt",
            "password": "secret",
            "exclude-old-transactions": True,
        }

    async def test_sandbox_receipt_retried_on_sandbox(self, client, mock_httpx):
        mock_httpx.post = AsyncMock(
            side_effect=[
                make_response(200, apple_body(21007)),
                make_response(200, apple_body(0, "Sandbox")),
            ]
        )

        result = await client.verify_receipt("receipt")

        assert result.environment == "Sandbox"
        assert [c.args[0] for c in mock_httpx.post.call_args_list] == [PRODUCTION_URL, SANDBOX_URL]

    async def test_production_receipt_retried_on_production(self, client, mock_httpx):
        mock_httpx.post = AsyncMock(
            side_effect=[
                make_response(200, apple_body(21008)),
                make_response(200, apple_body(0)),
            ]
        )

        result = await client.verify_receipt("receipt")

        assert result.status == 0
        assert [c.args[0] for c in mock_httpx.post.call_args_list] == [
            PRODUCTION_URL,
            PRODUCTION_URL,
        ]

    @pytest.mark.parametrize(
        "status,message",
        [
            (21002, "Apple rejected the receipt payload as malformed."),
            (21004, "The shared secret is invalid."),
            (21006, "This subscription has expired."),
            (21099, "Apple returned status 21099."),
        ],
    )
    async def test_non_zero_status(self, client, mock_httpx, status, message):
        mock_httpx.post = AsyncMock(return_value=make_response(200, apple_body(status)))

        with pytest.raises(ReceiptStatusError) as exc_info:
            await client.verify_receipt("receipt")

        assert exc_info.value.status == status
        assert exc_info.value.message == message

    async def test_transport_failure_is_upstream(self, client, mock_httpx):
        mock_httpx.post = AsyncMock(side_effect=httpx.ConnectTimeout("timeout"))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await client.verify_receipt("receipt")

        assert exc_info.value.message == "Unable to reach Apple verification service"

    async def test_http_error_is_upstream(self, client, mock_httpx):
        mock_httpx.post = AsyncMock(return_value=make_response(500, None, text="oops"))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await client.verify_receipt("receipt")

        assert exc_info.value.status_code == 500

    async def test_non_json_is_upstream(self, client, mock_httpx):
        response = make_response(200, None, text="<html>")
        response.json.side_effect = ValueError("not json")
        mock_httpx.post = AsyncMock(return_value=response)

        with pytest.raises(UpstreamUnavailableError):
            await client.verify_receipt("receipt")

    async def test_missing_shared_secret(self, mock_httpx):
        client = AppleReceiptClient("", PRODUCTION_URL, SANDBOX_URL)
        mock_httpx.post = AsyncMock()

        with pytest.raises(ConfigurationError):
            await client.verify_receipt("receipt")
        mock_httpx.post.assert_not_awaited()

    async def test_non_string_receipt(self, client):
        with pytest.raises(ValidationError):
            await client.verify_receipt({"receipt": "data"})  # type: ignore[arg-type]


def test_from_settings():
    settings = Settings(apple_iap_shared_secret="abc", apple_http_timeout_seconds=7.5)
    client = AppleReceiptClient.from_settings(settings)
    assert client.shared_secret == "abc"
    assert client.timeout == 7.5
    assert client.production_url == "https://buy.itunes.apple.com/verifyReceipt"
