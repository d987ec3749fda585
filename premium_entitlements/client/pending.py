"""
Pending purchase - the single in-flight purchase and its completion future.
"""

import asyncio

from structlog import get_logger

from premium_entitlements.client.native import NativePurchase
from premium_entitlements.exceptions import PurchaseError, PurchaseTimeoutError

logger = get_logger(__name__)


class PendingPurchase:
    """
    Completion state for one purchase attempt.

    Settles exactly once, through a matching purchase event, a matching error
    event, the timeout, or teardown. Later settle calls are no-ops.
    """

    def __init__(self, product_id: str, timeout_seconds: float) -> None:
        self.product_id = product_id
        self.timeout_seconds = timeout_seconds
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[NativePurchase] = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def settled(self) -> bool:
        return self._future.done()

    def start_timer(self) -> None:
        """Reject with PurchaseTimeoutError once ``timeout_seconds`` elapse."""
        if self._timer is None and not self.settled:
            self._timer = self._loop.call_later(self.timeout_seconds, self._on_timeout)

    def _on_timeout(self) -> None:
        if self.reject(PurchaseTimeoutError(self.product_id, self.timeout_seconds)):
            logger.warning(
                "purchase_timed_out",
                product_id=self.product_id,
                timeout_seconds=self.timeout_seconds,
            )

    def resolve(self, purchase: NativePurchase) -> bool:
        """Settle with a purchase. Returns False if already settled."""
        if self.settled:
            return False
        self._cancel_timer()
        self._future.set_result(purchase)
        return True

    def reject(self, error: PurchaseError) -> bool:
        """Settle with an error. Returns False if already settled."""
        if self.settled:
            return False
        self._cancel_timer()
        self._future.set_exception(error)
        return True

    def cancel(self) -> None:
        """Abandon an unsettled purchase without delivering an outcome."""
        self._cancel_timer()
        if not self.settled:
            self._future.cancel()

    async def wait(self) -> NativePurchase:
        """Wait for the outcome; raises the rejection error."""
        return await self._future

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
