"""
Product catalog - cached subscription product details for the paywall.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from structlog import get_logger

from premium_entitlements.client.native import NativeProduct, PurchaseCapability
from premium_entitlements.exceptions import NativeIapError, PurchaseError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProductDetails:
    """Normalized product metadata shown to the user."""

    id: str
    title: str
    description: str
    display_price: str | None
    currency: str | None

    @classmethod
    def from_native(cls, product: NativeProduct) -> "ProductDetails":
        return cls(
            id=product.id,
            title=product.title,
            description=product.description,
            display_price=product.display_price or product.localized_price,
            currency=product.currency,
        )


class ProductCatalog:
    """Caches the details of the last product loaded."""

    def __init__(
        self, capability: PurchaseCapability, connect: Callable[[], Awaitable[None]]
    ) -> None:
        self.capability = capability
        self.connect = connect
        self._cached: ProductDetails | None = None

    async def load_product_details(self, product_id: str) -> ProductDetails | None:
        """
        Details for ``product_id``, or None when the store has no such product
        or cannot be reached.
        """
        if self._cached is not None and self._cached.id == product_id:
            return self._cached

        try:
            await self.connect()
            products = await self.capability.fetch_products([product_id], "subs")
        except (PurchaseError, NativeIapError) as exc:
            logger.warning("product_details_load_failed", product_id=product_id, error=str(exc))
            return None

        match = next((product for product in products if product.id == product_id), None)
        if match is None:
            logger.info("product_not_found", product_id=product_id, returned=len(products))
            return None

        self._cached = ProductDetails.from_native(match)
        logger.debug("product_details_cached", product_id=product_id)
        return self._cached

    def invalidate(self) -> None:
        """Drop the cached details."""
        self._cached = None
