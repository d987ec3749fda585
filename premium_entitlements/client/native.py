"""
Native purchase capability - the interface to the platform's StoreKit bridge.

NO DICTIONARIES - Purchases, products and errors cross the boundary as
immutable dataclasses.

Implementations raise NativeIapError when a native call fails.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class PurchaseState(str, Enum):
    """Purchase states reported by the platform."""

    PURCHASED = "purchased"
    RESTORED = "restored"
    PENDING = "pending"
    DEFERRED = "deferred"
    FAILED = "failed"


TERMINAL_STATES = frozenset({PurchaseState.PURCHASED, PurchaseState.RESTORED})


@dataclass(frozen=True)
class NativePurchase:
    """Raw purchase event payload."""

    product_id: str | None
    transaction_id: str | None = None
    original_transaction_id: str | None = None
    transaction_date_ms: int | None = None
    transaction_receipt: str | None = None
    purchase_state: PurchaseState | None = None
    ids: tuple[str, ...] = field(default_factory=tuple)

    def matches(self, product_id: str) -> bool:
        """True when this purchase is for ``product_id`` directly or via ``ids``."""
        return self.product_id == product_id or product_id in self.ids

    def is_terminal_success(self) -> bool:
        """Purchased or restored, or no state reported but a receipt attached."""
        if self.purchase_state is not None:
            return self.purchase_state in TERMINAL_STATES
        return bool(self.transaction_receipt)


@dataclass(frozen=True)
class NativePurchaseError:
    """Payload of the purchase-error event."""

    message: str | None = None
    code: str | None = None
    product_id: str | None = None


@dataclass(frozen=True)
class NativeProduct:
    """Product metadata as returned by the platform."""

    id: str
    title: str
    description: str
    display_price: str | None = None
    localized_price: str | None = None
    currency: str | None = None


@dataclass(frozen=True)
class PurchaseRequest:
    """Arguments for a subscription purchase request."""

    sku: str
    product_type: str = "subs"
    # Transactions are finished explicitly after the purchase resolves
    finish_automatically: bool = False


class EventSubscription(Protocol):
    """Handle returned by an event registration."""

    def remove(self) -> None:
        """Stop delivering events to the callback."""
        ...


PurchaseUpdatedCallback = Callable[[NativePurchase], None]
PurchaseErrorCallback = Callable[[NativePurchaseError], None]


class PurchaseCapability(Protocol):
    """
    Native in-app purchase bridge.

    The two event channels are process-wide; ``PurchaseListenerRegistry``
    owns the subscriptions.
    """

    async def init_connection(self) -> bool:
        """Connect to the store. Returns False when the store refuses."""
        ...

    async def end_connection(self) -> None:
        """Close the store connection."""
        ...

    async def request_purchase(self, request: PurchaseRequest) -> None:
        """Start the purchase sheet. The outcome arrives on the event channels."""
        ...

    async def finish_transaction(self, purchase: NativePurchase, is_consumable: bool) -> None:
        """Acknowledge a delivered purchase."""
        ...

    async def get_available_purchases(
        self, also_publish_to_event_listener: bool, only_include_active_items: bool
    ) -> list[NativePurchase]:
        """List purchases the store can restore."""
        ...

    async def fetch_products(self, skus: list[str], product_type: str) -> list[NativeProduct]:
        """Fetch product metadata."""
        ...

    async def get_receipt(self) -> str | None:
        """Read the local app receipt (base64)."""
        ...

    async def refresh_receipt(self) -> None:
        """Ask the store to refresh the local app receipt."""
        ...

    def on_purchase_updated(self, callback: PurchaseUpdatedCallback) -> EventSubscription:
        """Subscribe to purchase-updated events."""
        ...

    def on_purchase_error(self, callback: PurchaseErrorCallback) -> EventSubscription:
        """Subscribe to purchase-error events."""
        ...
