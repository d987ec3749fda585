"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Client-side purchase errors derive from PurchaseError and carry user-facing
messages. Server-side errors are translated to HTTP responses by the routes.
"""


class EntitlementError(Exception):
    """Base exception for all entitlement errors."""

    pass


# ============================================================================
# Client purchase errors
# ============================================================================


class PurchaseError(EntitlementError):
    """Base class for errors surfaced to the purchasing user."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ClientBusyError(PurchaseError):
    """Raised when a purchase is started while another one is still pending."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(
            "Another purchase is still being processed. Please try again in a moment."
        )


class PurchaseTimeoutError(PurchaseError, TimeoutError):
    """Raised when the platform never reports the outcome of a purchase."""

    def __init__(self, product_id: str, timeout_seconds: float) -> None:
        self.product_id = product_id
        self.timeout_seconds = timeout_seconds
        super().__init__("Timed out while waiting for Apple to confirm the purchase.")


class PlatformRejectionError(PurchaseError):
    """Raised when a native purchase call or purchase event reports a failure."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class ConnectionClosedError(PlatformRejectionError):
    """Raised for a pending purchase when the store connection is torn down."""

    def __init__(self, message: str = "StoreKit connection closed.") -> None:
        super().__init__(message, code="connection_closed")


class ReceiptMissingError(PurchaseError):
    """Raised when no receipt can be obtained after a purchase or restore."""

    pass


class IapUnavailableError(PurchaseError):
    """Raised when native in-app purchases are not available on this build."""

    pass


class PremiumStatusError(PurchaseError):
    """Raised when the server refuses a premium-status update."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NativeIapError(EntitlementError):
    """Raised by a purchase capability when a native store call fails."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ============================================================================
# Server errors
# ============================================================================


class ValidationError(EntitlementError):
    """Raised when a request to the entitlement endpoints is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UpstreamUnavailableError(EntitlementError):
    """Raised when Apple's verification or key endpoints cannot be reached."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        self.service = service
        self.message = message
        self.status_code = status_code
        super().__init__(f"{service} unavailable: {message}")


class SignatureInvalidError(EntitlementError):
    """Raised when a signed payload fails verification against every key set."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Signature verification failed: {message}")


class ReceiptStatusError(EntitlementError):
    """Raised when Apple answers a receipt verification with a non-zero status."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(message)


class NoActiveSubscriptionError(EntitlementError):
    """Raised when a verified receipt has no entry for the requested product."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        self.message = "Apple did not return an active subscription for this product."
        super().__init__(self.message)


class MissingExpirationError(EntitlementError):
    """Raised when the selected receipt entry has no usable expiration date."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        self.message = "Apple receipt is missing an expiration date."
        super().__init__(self.message)


class ExpiredEntitlementError(EntitlementError):
    """Raised when a receipt verifies but its subscription has lapsed."""

    def __init__(self, product_id: str, expired_at_ms: int) -> None:
        self.product_id = product_id
        self.expired_at_ms = expired_at_ms
        self.message = "Subscription has expired. Renew via Apple and try again."
        super().__init__(self.message)


class RepositoryError(EntitlementError):
    """Raised when the entitlement store rejects an operation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Repository error: {message}")


class AuthenticationError(EntitlementError):
    """Raised when a user's bearer token cannot be validated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
