"""
Tests for PremiumPurchases: native flow, dev fallback and restore.
"""

import pytest

from premium_entitlements.client.config import DEV_PRODUCT_ID, ClientSettings
from premium_entitlements.client.native import NativeProduct
from premium_entitlements.client.orchestrator import PurchaseOrchestrator
from premium_entitlements.client.premium import (
    IAP_UNAVAILABLE_MESSAGE,
    PURCHASE_RECEIPT_MISSING_MESSAGE,
    RESTORE_RECEIPT_MISSING_MESSAGE,
    PremiumPurchases,
    format_transaction_date,
)
from premium_entitlements.exceptions import IapUnavailableError, ReceiptMissingError
from tests.client.fake_store import FakeStore, purchased


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.fetch_products.return_value = [
        NativeProduct(id="premium", title="Premium", description="All features")
    ]
    return store


@pytest.fixture
def ios_settings() -> ClientSettings:
    return ClientSettings(product_id="premium", platform="ios", dev_mode=False)


@pytest.fixture
def premium(store, ios_settings) -> PremiumPurchases:
    return PremiumPurchases(PurchaseOrchestrator(store, purchase_timeout_seconds=5), ios_settings)


class TestPurchasePremium:
    async def test_native_purchase(self, premium, store):
        store.complete_purchases_with(purchased())

        result = await premium.purchase_premium()

        assert result.product_id == "premium"
        assert result.transaction_id == "1000"
        assert result.transaction_date == "2024-01-15T12:00:00.000Z"
        assert result.receipt_data == "embedded-receipt"
        store.finish_transaction.assert_awaited_once()
        store.fetch_products.assert_awaited_once_with(["premium"], "subs")

    async def test_transaction_id_falls_back(self, premium, store):
        store.complete_purchases_with(purchased(original_transaction_id=None))

        result = await premium.purchase_premium()

        assert result.transaction_id == "2000"

    async def test_receipt_missing(self, premium, store):
        store.complete_purchases_with(purchased(transaction_receipt=None))
        store.get_receipt.return_value = None

        with pytest.raises(ReceiptMissingError) as exc_info:
            await premium.purchase_premium()
        assert exc_info.value.message == PURCHASE_RECEIPT_MISSING_MESSAGE

    async def test_receipt_read_after_finish(self, premium, store):
        calls: list[str] = []
        store.complete_purchases_with(purchased(transaction_receipt=None))
        store.finish_transaction.side_effect = lambda *a, **kw: calls.append("finish")

        async def read_receipt():
            calls.append("receipt")
            return "local-receipt"

        store.get_receipt.side_effect = read_receipt

        await premium.purchase_premium()

        assert calls == ["finish", "receipt"]


class TestUnavailable:
    async def test_missing_product_id_without_dev_mode(self, store):
        premium = PremiumPurchases(
            PurchaseOrchestrator(store), ClientSettings(product_id="", platform="ios")
        )

        with pytest.raises(IapUnavailableError) as exc_info:
            await premium.purchase_premium()
        assert exc_info.value.message == IAP_UNAVAILABLE_MESSAGE
        store.request_purchase.assert_not_awaited()

    async def test_dev_fallback(self, store):
        premium = PremiumPurchases(
            PurchaseOrchestrator(store),
            ClientSettings(product_id="", platform="ios", dev_mode=True),
        )

        result = await premium.purchase_premium()

        assert result.product_id == DEV_PRODUCT_ID
        assert result.transaction_id.startswith("dev-")
        assert result.receipt_data.startswith("dev-receipt-")
        store.init_connection.assert_not_awaited()

    async def test_dev_fallback_on_other_platform(self):
        premium = PremiumPurchases(
            None, ClientSettings(product_id="premium", platform="android", dev_mode=True)
        )

        result = await premium.restore_premium()

        assert result.product_id == "premium"
        assert result.receipt_data.startswith("dev-receipt-")

    async def test_product_details_unavailable(self):
        premium = PremiumPurchases(None, ClientSettings(product_id="premium"))
        assert await premium.load_premium_product_details() is None


class TestRestorePremium:
    async def test_restores(self, premium, store):
        store.get_available_purchases.return_value = [purchased()]

        result = await premium.restore_premium()

        assert result.transaction_id == "1000"
        assert result.receipt_data == "embedded-receipt"

    async def test_nothing_to_restore(self, premium):
        assert await premium.restore_premium() is None

    async def test_restore_without_receipt(self, premium, store):
        store.get_available_purchases.return_value = [purchased(transaction_receipt=None)]
        store.get_receipt.return_value = None

        with pytest.raises(ReceiptMissingError) as exc_info:
            await premium.restore_premium()
        assert exc_info.value.message == RESTORE_RECEIPT_MISSING_MESSAGE


async def test_end_connection(premium, store):
    await premium.orchestrator.init_connection()

    await premium.end_connection()

    store.end_connection.assert_awaited_once()


def test_format_transaction_date():
    assert format_transaction_date(None) is None
    assert format_transaction_date(0) == "1970-01-01T00:00:00.000Z"
