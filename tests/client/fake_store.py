"""
In-memory purchase capability for client tests.

Native calls are AsyncMocks so tests can set return values and side effects;
the two event channels are plain callback lists driven by emit_*().
"""

from unittest.mock import AsyncMock

from premium_entitlements.client.native import (
    NativePurchase,
    NativePurchaseError,
    PurchaseErrorCallback,
    PurchaseState,
    PurchaseUpdatedCallback,
)


class FakeSubscription:
    def __init__(self, callbacks: list, callback) -> None:
        self.callbacks = callbacks
        self.callback = callback
        self.removed = False

    def remove(self) -> None:
        if self.callback in self.callbacks:
            self.callbacks.remove(self.callback)
        self.removed = True


class FakeStore:
    """PurchaseCapability double."""

    def __init__(self) -> None:
        self.init_connection = AsyncMock(return_value=True)
        self.end_connection = AsyncMock(return_value=None)
        self.request_purchase = AsyncMock(return_value=None)
        self.finish_transaction = AsyncMock(return_value=None)
        self.get_available_purchases = AsyncMock(return_value=[])
        self.fetch_products = AsyncMock(return_value=[])
        self.get_receipt = AsyncMock(return_value="local-receipt")
        self.refresh_receipt = AsyncMock(return_value=None)
        self.updated_callbacks: list[PurchaseUpdatedCallback] = []
        self.error_callbacks: list[PurchaseErrorCallback] = []

    def on_purchase_updated(self, callback: PurchaseUpdatedCallback) -> FakeSubscription:
        self.updated_callbacks.append(callback)
        return FakeSubscription(self.updated_callbacks, callback)

    def on_purchase_error(self, callback: PurchaseErrorCallback) -> FakeSubscription:
        self.error_callbacks.append(callback)
        return FakeSubscription(self.error_callbacks, callback)

    def emit_purchase(self, purchase: NativePurchase) -> None:
        for callback in list(self.updated_callbacks):
            callback(purchase)

    def emit_error(self, error: NativePurchaseError) -> None:
        for callback in list(self.error_callbacks):
            callback(error)

    def complete_purchases_with(self, purchase: NativePurchase) -> None:
        """Emit ``purchase`` as soon as a purchase is requested."""

        def _complete(request) -> None:
            self.emit_purchase(purchase)

        self.request_purchase.side_effect = _complete


def purchased(product_id: str = "premium", **fields) -> NativePurchase:
    """A successful purchase event."""
    defaults = {
        "transaction_id": "2000",
        "original_transaction_id": "1000",
        "transaction_date_ms": 1705320000000,
        "transaction_receipt": "embedded-receipt",
        "purchase_state": PurchaseState.PURCHASED,
    }
    defaults.update(fields)
    return NativePurchase(product_id=product_id, **defaults)
