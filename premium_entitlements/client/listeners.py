"""
Purchase listener registry - owns the two native event subscriptions.
"""

from structlog import get_logger

from premium_entitlements.client.native import (
    EventSubscription,
    PurchaseCapability,
    PurchaseErrorCallback,
    PurchaseUpdatedCallback,
)

logger = get_logger(__name__)


class PurchaseListenerRegistry:
    """Attaches the purchase-updated and purchase-error callbacks at most once."""

    def __init__(self, capability: PurchaseCapability) -> None:
        self.capability = capability
        self._attached = False
        self._subscriptions: list[EventSubscription] = []

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self, on_updated: PurchaseUpdatedCallback, on_error: PurchaseErrorCallback) -> bool:
        """Register both callbacks. Returns False when already attached."""
        if self._attached:
            return False

        self._subscriptions = [
            self.capability.on_purchase_updated(on_updated),
            self.capability.on_purchase_error(on_error),
        ]
        self._attached = True
        logger.debug("purchase_listeners_attached")
        return True

    def detach(self) -> None:
        """Remove both subscriptions."""
        for subscription in self._subscriptions:
            subscription.remove()
        self._subscriptions = []
        if self._attached:
            logger.debug("purchase_listeners_detached")
        self._attached = False
