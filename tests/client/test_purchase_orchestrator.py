"""
Tests for PurchaseOrchestrator: connection sharing, the single pending
purchase, event matching, timeout and teardown.
"""

import asyncio

import pytest

from premium_entitlements.client.native import (
    NativePurchase,
    NativePurchaseError,
    PurchaseRequest,
    PurchaseState,
)
from premium_entitlements.client.orchestrator import (
    CONNECT_FAILED_MESSAGE,
    PURCHASE_FAILED_MESSAGE,
    PurchaseOrchestrator,
)
from premium_entitlements.exceptions import (
    ClientBusyError,
    ConnectionClosedError,
    NativeIapError,
    PlatformRejectionError,
    PurchaseTimeoutError,
)
from tests.client.fake_store import FakeStore, purchased


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def orchestrator(store) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(store, purchase_timeout_seconds=5)


async def until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestConnection:
    async def test_concurrent_callers_share_one_attempt(self, orchestrator, store):
        await asyncio.gather(orchestrator.init_connection(), orchestrator.init_connection())

        store.init_connection.assert_awaited_once()
        assert orchestrator.connected
        assert len(store.updated_callbacks) == 1
        assert len(store.error_callbacks) == 1

    async def test_already_connected_is_noop(self, orchestrator, store):
        await orchestrator.init_connection()
        await orchestrator.init_connection()

        store.init_connection.assert_awaited_once()

    async def test_refused_connection(self, orchestrator, store):
        store.init_connection.return_value = False

        with pytest.raises(PlatformRejectionError) as exc_info:
            await orchestrator.init_connection()

        assert exc_info.value.message == CONNECT_FAILED_MESSAGE
        assert not orchestrator.connected
        assert not orchestrator.listeners.attached

    async def test_retry_after_failure(self, orchestrator, store):
        store.init_connection.side_effect = [NativeIapError("boom", code="E_INIT"), True]

        with pytest.raises(PlatformRejectionError) as exc_info:
            await orchestrator.init_connection()
        assert exc_info.value.code == "E_INIT"

        await orchestrator.init_connection()
        assert orchestrator.connected

    async def test_end_connection_detaches_everything(self, orchestrator, store):
        await orchestrator.init_connection()

        await orchestrator.end_connection()

        store.end_connection.assert_awaited_once()
        assert not orchestrator.connected
        assert store.updated_callbacks == []
        assert store.error_callbacks == []

    async def test_end_without_connection(self, orchestrator, store):
        await orchestrator.end_connection()
        store.end_connection.assert_not_awaited()


class TestPurchase:
    async def test_resolves_on_matching_event(self, orchestrator, store):
        store.complete_purchases_with(purchased())

        purchase = await orchestrator.purchase("premium")

        assert purchase.transaction_id == "2000"
        store.request_purchase.assert_awaited_once_with(PurchaseRequest(sku="premium"))
        assert orchestrator.pending is None

    async def test_connects_lazily(self, orchestrator, store):
        store.complete_purchases_with(purchased())

        await orchestrator.purchase("premium")

        store.init_connection.assert_awaited_once()

    async def test_second_purchase_while_pending_is_busy(self, orchestrator, store):
        first = asyncio.create_task(orchestrator.purchase("premium"))
        await until(lambda: store.request_purchase.await_count == 1)

        with pytest.raises(ClientBusyError):
            await orchestrator.purchase("premium")
        assert store.request_purchase.await_count == 1

        store.emit_purchase(purchased())
        assert (await first).product_id == "premium"

    async def test_ignores_other_products_and_non_terminal_states(self, orchestrator, store):
        task = asyncio.create_task(orchestrator.purchase("premium"))
        await until(lambda: store.request_purchase.await_count == 1)

        store.emit_purchase(purchased("other.product"))
        store.emit_purchase(purchased(purchase_state=PurchaseState.PENDING))
        store.emit_purchase(
            NativePurchase(product_id="premium", purchase_state=None, transaction_receipt=None)
        )
        await asyncio.sleep(0)
        assert not task.done()

        store.emit_purchase(purchased(transaction_id="3000"))
        assert (await task).transaction_id == "3000"

    async def test_matches_on_ids_list(self, orchestrator, store):
        store.complete_purchases_with(
            NativePurchase(
                product_id=None,
                ids=("premium",),
                transaction_receipt="r",
            )
        )

        purchase = await orchestrator.purchase("premium")

        assert purchase.ids == ("premium",)

    async def test_error_event_rejects(self, orchestrator, store):
        task = asyncio.create_task(orchestrator.purchase("premium"))
        await until(lambda: store.request_purchase.await_count == 1)

        store.emit_error(NativePurchaseError(message="wrong", product_id="other.product"))
        await asyncio.sleep(0)
        assert not task.done()

        store.emit_error(NativePurchaseError(message="User cancelled", code="E_USER_CANCELLED"))

        with pytest.raises(PlatformRejectionError) as exc_info:
            await task
        assert exc_info.value.message == "User cancelled"
        assert exc_info.value.code == "E_USER_CANCELLED"
        assert orchestrator.pending is None

    async def test_error_event_without_message(self, orchestrator, store):
        task = asyncio.create_task(orchestrator.purchase("premium"))
        await until(lambda: store.request_purchase.await_count == 1)

        store.emit_error(NativePurchaseError())

        with pytest.raises(PlatformRejectionError) as exc_info:
            await task
        assert exc_info.value.message == PURCHASE_FAILED_MESSAGE

    async def test_request_failure_rejects(self, orchestrator, store):
        store.request_purchase.side_effect = NativeIapError("Sheet failed", code="E_SHEET")

        with pytest.raises(PlatformRejectionError) as exc_info:
            await orchestrator.purchase("premium")

        assert exc_info.value.message == "Sheet failed"
        assert orchestrator.pending is None

    async def test_connection_failure_clears_pending(self, orchestrator, store):
        store.init_connection.return_value = False

        with pytest.raises(PlatformRejectionError):
            await orchestrator.purchase("premium")

        assert orchestrator.pending is None
        store.request_purchase.assert_not_awaited()

    async def test_timeout_then_new_purchase(self, store):
        orchestrator = PurchaseOrchestrator(store, purchase_timeout_seconds=0.01)

        with pytest.raises(PurchaseTimeoutError):
            await orchestrator.purchase("premium")
        assert orchestrator.pending is None

        store.complete_purchases_with(purchased())
        assert (await orchestrator.purchase("premium")).product_id == "premium"

    async def test_late_event_after_timeout_is_ignored(self, store):
        orchestrator = PurchaseOrchestrator(store, purchase_timeout_seconds=0.01)

        with pytest.raises(PurchaseTimeoutError):
            await orchestrator.purchase("premium")

        store.emit_purchase(purchased())
        assert orchestrator.pending is None

    async def test_end_connection_rejects_pending(self, orchestrator, store):
        task = asyncio.create_task(orchestrator.purchase("premium"))
        await until(lambda: store.request_purchase.await_count == 1)

        await orchestrator.end_connection()

        with pytest.raises(ConnectionClosedError):
            await task
        assert orchestrator.pending is None


class TestReceipts:
    async def test_finalize_finishes_non_consumable(self, orchestrator, store):
        purchase = purchased()
        await orchestrator.finalize_purchase(purchase)
        store.finish_transaction.assert_awaited_once_with(purchase, is_consumable=False)

    async def test_embedded_receipt_first(self, orchestrator, store):
        assert await orchestrator.fetch_receipt_data(purchased()) == "embedded-receipt"
        store.get_receipt.assert_not_awaited()

    async def test_local_receipt(self, orchestrator, store):
        receipt = await orchestrator.fetch_receipt_data(purchased(transaction_receipt=None))
        assert receipt == "local-receipt"
        store.refresh_receipt.assert_not_awaited()

    async def test_refresh_when_local_missing(self, orchestrator, store):
        store.get_receipt.side_effect = [None, "refreshed-receipt"]

        assert await orchestrator.fetch_receipt_data() == "refreshed-receipt"
        store.refresh_receipt.assert_awaited_once()

    async def test_read_error_then_refresh(self, orchestrator, store):
        store.get_receipt.side_effect = [NativeIapError("no receipt"), "refreshed-receipt"]

        assert await orchestrator.fetch_receipt_data() == "refreshed-receipt"

    async def test_no_receipt_at_all(self, orchestrator, store):
        store.get_receipt.return_value = ""
        store.refresh_receipt.side_effect = NativeIapError("refresh failed")

        assert await orchestrator.fetch_receipt_data() is None


class TestRestore:
    async def test_restores_matching_purchase(self, orchestrator, store):
        store.get_available_purchases.return_value = [
            purchased("other.product"),
            purchased(transaction_receipt=None, transaction_id="4000"),
        ]

        restored = await orchestrator.restore("premium")

        assert restored.transaction_id == "4000"
        assert restored.transaction_receipt == "local-receipt"
        store.get_available_purchases.assert_awaited_once_with(
            also_publish_to_event_listener=False, only_include_active_items=True
        )

    async def test_nothing_to_restore(self, orchestrator, store):
        assert await orchestrator.restore("premium") is None

    async def test_listing_failure(self, orchestrator, store):
        store.get_available_purchases.side_effect = NativeIapError("offline", code="E_NET")

        with pytest.raises(PlatformRejectionError) as exc_info:
            await orchestrator.restore("premium")
        assert exc_info.value.code == "E_NET"
