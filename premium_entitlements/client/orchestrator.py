"""
Purchase Orchestrator - client-side state machine for StoreKit purchases.

Flow:
1. init_connection() connects once and attaches the event listeners
2. purchase() creates the single PendingPurchase and asks the store to start
3. The purchase-updated / purchase-error events, the timeout, or teardown
   settle the PendingPurchase exactly once
4. finalize_purchase() and fetch_receipt_data() prepare the receipt for the server
"""

import asyncio
from dataclasses import replace

from structlog import get_logger

from premium_entitlements.client.catalog import ProductCatalog
from premium_entitlements.client.listeners import PurchaseListenerRegistry
from premium_entitlements.client.native import (
    NativePurchase,
    NativePurchaseError,
    PurchaseCapability,
    PurchaseRequest,
)
from premium_entitlements.client.pending import PendingPurchase
from premium_entitlements.exceptions import (
    ClientBusyError,
    ConnectionClosedError,
    NativeIapError,
    PlatformRejectionError,
)

logger = get_logger(__name__)

DEFAULT_PURCHASE_TIMEOUT_SECONDS = 120.0

CONNECT_FAILED_MESSAGE = "Unable to connect to the App Store for purchases. Please try again."
PURCHASE_FAILED_MESSAGE = "Apple was unable to complete this purchase."


class PurchaseOrchestrator:
    """Owns the store connection, the listeners and the single pending purchase."""

    def __init__(
        self,
        capability: PurchaseCapability,
        purchase_timeout_seconds: float = DEFAULT_PURCHASE_TIMEOUT_SECONDS,
    ) -> None:
        self.capability = capability
        self.purchase_timeout_seconds = purchase_timeout_seconds
        self.listeners = PurchaseListenerRegistry(capability)
        self.catalog = ProductCatalog(capability, self.init_connection)
        self._connected = False
        self._connecting: asyncio.Task[None] | None = None
        self._pending: PendingPurchase | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def pending(self) -> PendingPurchase | None:
        return self._pending

    # ========================================================================
    # Connection
    # ========================================================================

    async def init_connection(self) -> None:
        """
        Connect to the store. Concurrent callers share one in-flight attempt.

        Raises:
            PlatformRejectionError: The store refused or the native call failed
        """
        if self._connected:
            return

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect())

        task = self._connecting
        try:
            await asyncio.shield(task)
        finally:
            if self._connecting is task and task.done():
                self._connecting = None

    async def _connect(self) -> None:
        logger.info("store_connection_starting")
        try:
            connected = await self.capability.init_connection()
        except NativeIapError as exc:
            logger.warning("store_connection_failed", error=exc.message, code=exc.code)
            raise PlatformRejectionError(CONNECT_FAILED_MESSAGE, code=exc.code) from exc

        if not connected:
            logger.warning("store_connection_refused")
            raise PlatformRejectionError(CONNECT_FAILED_MESSAGE)

        self.listeners.attach(self._on_purchase_updated, self._on_purchase_error)
        self._connected = True
        logger.info("store_connection_ready")

    async def end_connection(self) -> None:
        """Close the connection, detach listeners, cancel any pending purchase."""
        if self._connecting is not None:
            try:
                await asyncio.shield(self._connecting)
            except PlatformRejectionError:
                logger.debug("store_connection_attempt_failed_before_teardown")

        if self._connected:
            try:
                await self.capability.end_connection()
            except NativeIapError as exc:
                logger.warning("store_disconnect_failed", error=exc.message)

        self.listeners.detach()
        self._settle_error(ConnectionClosedError())
        self.catalog.invalidate()
        self._connected = False
        logger.info("store_connection_closed")

    # ========================================================================
    # Purchase
    # ========================================================================

    async def purchase(self, product_id: str) -> NativePurchase:
        """
        Start a purchase and wait for its outcome.

        Raises:
            ClientBusyError: Another purchase is pending
            PlatformRejectionError: The store rejected the request or reported an error
            PurchaseTimeoutError: No purchase event arrived in time
            ConnectionClosedError: The connection was closed while waiting
        """
        if self._pending is not None:
            logger.info("purchase_rejected_busy", product_id=product_id)
            raise ClientBusyError(product_id)

        pending = PendingPurchase(product_id, self.purchase_timeout_seconds)
        self._pending = pending
        try:
            await self.init_connection()

            pending.start_timer()
            logger.info("purchase_requested", product_id=product_id)
            try:
                await self.capability.request_purchase(PurchaseRequest(sku=product_id))
            except NativeIapError as exc:
                logger.warning("purchase_request_failed", product_id=product_id, error=exc.message)
                pending.reject(
                    PlatformRejectionError(exc.message or PURCHASE_FAILED_MESSAGE, code=exc.code)
                )

            purchase = await pending.wait()
        finally:
            pending.cancel()
            if self._pending is pending:
                self._pending = None

        logger.info(
            "purchase_completed",
            product_id=purchase.product_id,
            transaction_id=purchase.transaction_id,
            purchase_state=purchase.purchase_state,
        )
        return purchase

    def _on_purchase_updated(self, purchase: NativePurchase) -> None:
        pending = self._pending
        if pending is None or pending.settled:
            return
        if not purchase.matches(pending.product_id) or not purchase.is_terminal_success():
            return
        pending.resolve(purchase)

    def _on_purchase_error(self, error: NativePurchaseError) -> None:
        pending = self._pending
        if pending is None:
            return
        if error.product_id and error.product_id != pending.product_id:
            return
        logger.warning(
            "purchase_error_event",
            product_id=pending.product_id,
            code=error.code,
            error=error.message,
        )
        self._settle_error(
            PlatformRejectionError(error.message or PURCHASE_FAILED_MESSAGE, code=error.code)
        )

    def _settle_error(self, error: PlatformRejectionError) -> None:
        if self._pending is not None:
            self._pending.reject(error)

    # ========================================================================
    # Receipts
    # ========================================================================

    async def finalize_purchase(self, purchase: NativePurchase) -> None:
        """Finish the transaction; always done before the receipt is read."""
        await self.capability.finish_transaction(purchase, is_consumable=False)
        logger.debug("transaction_finished", transaction_id=purchase.transaction_id)

    async def fetch_receipt_data(self, purchase: NativePurchase | None = None) -> str | None:
        """
        Receipt for ``purchase``: embedded, else local, else one refresh and reread.

        Returns None when no receipt can be produced.
        """
        if purchase is not None and purchase.transaction_receipt:
            return purchase.transaction_receipt

        try:
            receipt = await self.capability.get_receipt()
            if receipt:
                return receipt
        except NativeIapError as exc:
            logger.warning("receipt_read_failed", error=exc.message)

        try:
            await self.capability.refresh_receipt()
            return await self.capability.get_receipt() or None
        except NativeIapError as exc:
            logger.warning("receipt_refresh_failed", error=exc.message)
            return None

    async def restore(self, product_id: str) -> NativePurchase | None:
        """
        Find an active purchase of ``product_id`` and attach its receipt.

        Returns None when the store lists no matching purchase.
        """
        await self.init_connection()
        try:
            purchases = await self.capability.get_available_purchases(
                also_publish_to_event_listener=False, only_include_active_items=True
            )
        except NativeIapError as exc:
            raise PlatformRejectionError(exc.message, code=exc.code) from exc

        match = next((item for item in purchases if item.matches(product_id)), None)
        if match is None:
            logger.info("restore_found_no_purchase", product_id=product_id, listed=len(purchases))
            return None

        receipt = await self.fetch_receipt_data(match)
        return replace(match, transaction_receipt=receipt)
