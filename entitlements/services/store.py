"""
Store Protocol - Platform-agnostic interface to the purchase subsystem.

NO DICTIONARIES - All data uses strongly typed models.
"""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from entitlements.models.storekit import Product, PurchaseResult, Transaction, VerificationResult


class Store(Protocol):
    """
    Purchase subsystem protocol.

    The platform owns products, the purchase sheet, signing of transactions
    and the update feed. Anything that supplies those (StoreKit on device,
    the local testing store) implements this interface.
    """

    async def fetch_products(self, product_ids: Sequence[str]) -> list[Product]:
        """
        Load product metadata.

        Args:
            product_ids: Identifiers to look up

        Returns:
            Products found; unknown identifiers are omitted

        Raises:
            ProductFetchError: If the store cannot be reached
        """
        ...

    async def purchase(
        self,
        product: Product,
        *,
        simulates_ask_to_buy_in_sandbox: bool = False,
        app_account_token: str | None = None,
    ) -> PurchaseResult:
        """
        Start a purchase.

        Raises:
            PurchaseError: If the purchase could not be started
        """
        ...

    def transaction_updates(self) -> AsyncIterator[VerificationResult]:
        """Stream transactions that arrive outside a direct purchase call."""
        ...

    def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        """Yield the latest transaction for each product the user is entitled to."""
        ...

    async def finish(self, transaction: Transaction) -> None:
        """Tell the store the transaction has been delivered."""
        ...

    async def sync(self) -> None:
        """
        Restore purchases.

        Raises:
            StoreSyncError: If the sync fails
        """
        ...

    async def close(self) -> None:
        """End the update feed."""
        ...
