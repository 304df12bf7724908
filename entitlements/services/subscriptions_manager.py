"""
Subscriptions Manager - Entitlement reconciliation.

Feeds every transaction the store hands out (update feed, current
entitlements at start-up, direct purchases) to the iaptic validator and
re-derives the entitlement flag from the validator's purchase list.

Failures never touch the flag: they are logged and the last computed value
stays in place.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from structlog import get_logger

from entitlements.exceptions import (
    EntitlementsError,
    ProductFetchError,
    ProductNotFoundError,
    PurchaseError,
    StoreSyncError,
    ValidationServiceError,
)
from entitlements.models.storekit import Product, PurchaseStatus, VerificationResult
from entitlements.observability.logging import log_context
from entitlements.observability.metrics import metrics
from entitlements.services.entitlement_manager import EntitlementManager
from entitlements.services.iaptic import IapticClient
from entitlements.services.store import Store

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionsManager:
    """
    Glue between the store, the validator and the entitlement flag.

    Transactions are processed one at a time in the order the store delivers
    them.
    """

    def __init__(
        self,
        store: Store,
        iaptic: IapticClient,
        entitlement_manager: EntitlementManager,
        *,
        product_ids: Sequence[str],
        bundle_id: str,
        application_username: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize subscriptions manager.

        Args:
            store: Purchase subsystem
            iaptic: Validator client
            entitlement_manager: Holder of the entitlement flag
            product_ids: Products offered to the user
            bundle_id: Fallback product identifier for unverified transactions
            application_username: User the validator attaches purchases to
            clock: Source of the current time
        """
        self.store = store
        self.iaptic = iaptic
        self.entitlement_manager = entitlement_manager
        self.product_ids = list(product_ids)
        self.bundle_id = bundle_id
        self.application_username = application_username
        self._clock = clock

        self._products: list[Product] = []
        self._updates_task: asyncio.Task[None] | None = None
        self._initial_check_task: asyncio.Task[None] | None = None

        logger.info(
            "subscriptions_manager_initialized",
            product_ids=self.product_ids,
            application_username=application_username,
        )

    @property
    def products(self) -> list[Product]:
        """Loaded products, most expensive first."""
        return list(self._products)

    @property
    def has_pro(self) -> bool:
        """Current entitlement flag."""
        return self.entitlement_manager.has_pro

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start observing transaction updates and check existing entitlements."""
        if self._updates_task is not None:
            return
        self._updates_task = asyncio.create_task(self.observe_transaction_updates())
        self._initial_check_task = asyncio.create_task(self.check_current_entitlements())
        logger.info("transaction_observer_task_created")

    async def stop(self) -> None:
        """Cancel the background tasks and wait for them to end."""
        tasks = [t for t in (self._updates_task, self._initial_check_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._updates_task = None
        self._initial_check_task = None
        logger.info("subscriptions_manager_stopped")

    async def wait_for_initial_check(self) -> None:
        """Wait until existing entitlements have been validated."""
        if self._initial_check_task is not None:
            await asyncio.shield(self._initial_check_task)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def verify_with_iaptic(self, jws_representation: str, product_id: str = "") -> bool:
        """
        Validate a signed transaction and refresh the entitlement flag.

        Args:
            jws_representation: Compact JWS of the transaction
            product_id: Product the transaction belongs to; the bundle ID is
                used when empty

        Returns:
            True when the validator accepted the transaction
        """
        start = time.perf_counter()
        try:
            response = await self.iaptic.validate_with_jws(
                product_id=product_id or self.bundle_id,
                jws_representation=jws_representation,
                application_username=self.application_username,
            )
        except ValidationServiceError as exc:
            metrics.record_validation("error", time.perf_counter() - start)
            logger.error("transaction_validation_failed", error=exc.message)
            return False

        if not response.is_valid:
            metrics.record_validation("rejected", time.perf_counter() - start)
            logger.warning(
                "transaction_validation_rejected",
                code=response.error_code,
                message=response.error_message,
            )
            return False

        metrics.record_validation("valid", time.perf_counter() - start)
        logger.info("transaction_validated")
        self.update_entitlements()
        return True

    def update_entitlements(self) -> None:
        """Set the flag from the validator's list of verified purchases."""
        verified_purchases = self.iaptic.get_verified_purchases()
        if verified_purchases is None:
            has_pro = False
        else:
            has_pro = any(purchase.is_active() for purchase in verified_purchases)

        self.entitlement_manager.has_pro = has_pro
        metrics.set_entitlement(has_pro)

    async def _process(self, result: VerificationResult, source: str) -> None:
        transaction = result.transaction
        metrics.record_transaction(source, result.verified)

        if result.verified:
            logger.info(
                "transaction_verified",
                product_id=transaction.product_id,
                purchase_date=transaction.purchase_date.isoformat(),
            )
            await self.verify_with_iaptic(result.jws_representation, transaction.product_id)
        else:
            logger.warning(
                "transaction_unverified",
                product_id=transaction.product_id,
                error=result.error,
            )
            product_id = transaction.product_id if source != "updates" else ""
            await self.verify_with_iaptic(result.jws_representation, product_id)

    async def observe_transaction_updates(self) -> None:
        """Consume the store's update feed until it ends or the task is cancelled."""
        logger.info("transaction_observer_started")
        async for result in self.store.transaction_updates():
            with log_context(transaction_id=result.transaction.id):
                logger.info("transaction_update_received")
                try:
                    await self._process(result, "updates")
                    if result.verified:
                        await self.store.finish(result.transaction)
                except Exception:
                    # One bad event must not end the feed
                    logger.exception("transaction_update_failed")
        logger.info("transaction_observer_ended")

    async def check_current_entitlements(self) -> None:
        """Validate every transaction the user is currently entitled to."""
        logger.info("checking_existing_transactions")
        async for result in self.store.current_entitlements():
            with log_context(transaction_id=result.transaction.id):
                try:
                    await self._process(result, "current_entitlements")
                except Exception:
                    logger.exception("existing_transaction_check_failed")
        logger.info("existing_transactions_checked")

    # ------------------------------------------------------------------
    # Products and purchases
    # ------------------------------------------------------------------

    async def load_products(self) -> None:
        """Fetch the configured products, most expensive first."""
        try:
            products = await self.store.fetch_products(self.product_ids)
        except ProductFetchError as exc:
            logger.error("product_fetch_failed", error=exc.message)
            return

        self._products = sorted(products, key=lambda product: product.price, reverse=True)
        logger.info("products_loaded", product_ids=[p.id for p in self._products])

    def get_product(self, product_id: str) -> Product | None:
        """Find a loaded product by ID."""
        return next((p for p in self._products if p.id == product_id), None)

    async def find_product(self, product_id: str) -> Product:
        """
        Find a product, reloading the catalogue once when it is not loaded yet.

        Raises:
            ProductNotFoundError: If the store does not offer the product
        """
        product = self.get_product(product_id)
        if product is None:
            await self.load_products()
            product = self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def buy_product(self, product: Product) -> PurchaseStatus:
        """
        Purchase a product and validate the resulting transaction.

        Returns:
            Outcome of the purchase; FAILED when the store raised
        """
        with log_context(product_id=product.id):
            logger.info("purchase_started")
            await self.check_and_finish_expired_transactions(product.id)

            try:
                result = await self.store.purchase(product, simulates_ask_to_buy_in_sandbox=True)
            except PurchaseError as exc:
                logger.error("purchase_failed", error=exc.message)
                metrics.record_purchase(PurchaseStatus.FAILED.value)
                return PurchaseStatus.FAILED

            if result.status == PurchaseStatus.SUCCESS and result.verification is not None:
                logger.info(
                    "purchase_succeeded",
                    transaction_id=result.verification.transaction.id,
                )
                await self._process(result.verification, "purchase")
            elif result.status == PurchaseStatus.PENDING:
                logger.info("purchase_pending_approval")
            elif result.status == PurchaseStatus.USER_CANCELLED:
                logger.info("purchase_cancelled_by_user")
            else:
                logger.warning("purchase_result_unknown", status=result.status.value)

            metrics.record_purchase(result.status.value)
            return result.status

    async def check_and_finish_expired_transactions(self, product_id: str) -> None:
        """Finish expired transactions of a product so it can be bought again."""
        now = self._clock()
        try:
            async for result in self.store.current_entitlements():
                transaction = result.transaction
                if (
                    result.verified
                    and transaction.product_id == product_id
                    and transaction.is_expired(now)
                ):
                    logger.info("finishing_expired_transaction", transaction_id=transaction.id)
                    await self.store.finish(transaction)
        except EntitlementsError as exc:
            logger.warning("expired_transaction_cleanup_failed", error=str(exc))

    async def restore_purchases(self) -> bool:
        """
        Restore purchases from the store.

        Restored transactions come back through the update feed.

        Returns:
            True when the sync completed
        """
        logger.info("restoring_purchases")
        try:
            await self.store.sync()
        except StoreSyncError as exc:
            logger.error("restore_purchases_failed", error=exc.message)
            return False

        logger.info("restore_purchases_completed", has_pro=self.has_pro)
        return True
