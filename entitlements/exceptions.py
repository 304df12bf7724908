"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class EntitlementsError(Exception):
    """Base exception for all purchase and entitlement errors."""

    pass


class ProductFetchError(EntitlementsError):
    """Raised when product metadata cannot be loaded from the store."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Failed to fetch products: {message}")


class ProductNotFoundError(EntitlementsError):
    """Raised when a product ID is not part of the loaded catalogue."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Unknown product ID: {product_id}")


class PurchaseError(EntitlementsError):
    """Raised when the store fails to run a purchase."""

    def __init__(self, product_id: str, message: str) -> None:
        self.product_id = product_id
        self.message = message
        super().__init__(f"Purchase of {product_id} failed: {message}")


class VerificationError(EntitlementsError):
    """Raised when a signed transaction fails local signature verification."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Transaction verification failed: {message}")


class ValidationServiceError(EntitlementsError):
    """Raised when the remote validation service cannot be reached or answers garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Validation service error: {message}")


class StoreSyncError(EntitlementsError):
    """Raised when restoring purchases from the store fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Store sync failed: {message}")


class StoreKitConfigError(EntitlementsError):
    """Raised when a StoreKit configuration file cannot be parsed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"Invalid StoreKit configuration {path}: {message}")
