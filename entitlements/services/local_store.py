"""
Local StoreKit testing store.

In-process stand-in for the platform purchase subsystem, modelled on
StoreKit's local testing environment: products come from a ``.storekit``
configuration, transactions are signed as JWS and checked locally, and
Ask to Buy approvals arrive through the transaction update feed.
"""

import asyncio
import re
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import jwt
from structlog import get_logger

from entitlements.exceptions import ProductFetchError, PurchaseError, StoreSyncError
from entitlements.models.storekit import (
    Product,
    ProductType,
    PurchaseResult,
    PurchaseStatus,
    Transaction,
    VerificationResult,
)

logger = get_logger(__name__)

_JWS_ALGORITHM = "HS256"
_PERIOD_PATTERN = re.compile(r"^P(\d+)([DWMY])$")
_PERIOD_DAYS = {"D": 1, "W": 7, "M": 30, "Y": 365}
_FIRST_TRANSACTION_ID = 2000000000000001


def parse_subscription_period(period: str) -> timedelta:
    """
    Convert an ISO-8601 subscription period to a timedelta.

    Months count as 30 days and years as 365 days.

    Raises:
        ValueError: If the period is not of the form P<n>D/W/M/Y
    """
    match = _PERIOD_PATTERN.match(period)
    if not match:
        raise ValueError(f"Unsupported subscription period: {period}")
    count, unit = match.groups()
    return timedelta(days=int(count) * _PERIOD_DAYS[unit])


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LocalStore:
    """
    In-memory purchase subsystem.

    A single consumer is expected on ``transaction_updates()``.
    """

    def __init__(
        self,
        products: Sequence[Product],
        *,
        bundle_id: str,
        signing_key: str,
        verification_key: str | None = None,
        environment: str = "Xcode",
        ask_to_buy_enabled: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the local store.

        Args:
            products: Catalogue served by fetch_products
            bundle_id: Bundle ID stamped on every transaction
            signing_key: HMAC key used to sign transactions
            verification_key: Key used for local verification (defaults to signing_key)
            environment: "Xcode", "Sandbox" or "Production"
            ask_to_buy_enabled: Hold purchases that request Ask to Buy simulation
            clock: Source of the current time
        """
        self._products = {product.id: product for product in products}
        self.bundle_id = bundle_id
        self._signing_key = signing_key
        self._verification_key = verification_key or signing_key
        self.environment = environment
        self.ask_to_buy_enabled = ask_to_buy_enabled
        self._clock = clock

        self._transactions: list[Transaction] = []
        self._finished: set[str] = set()
        self._pending: dict[str, str | None] = {}  # product_id -> app_account_token
        self._updates: asyncio.Queue[VerificationResult | None] = asyncio.Queue()
        self._next_id = _FIRST_TRANSACTION_ID
        self._closed = False

        # Failure switches for exercising error paths
        self.unavailable = False
        self.decline_purchases = False

        logger.info(
            "local_store_initialized",
            bundle_id=bundle_id,
            environment=environment,
            product_count=len(self._products),
            ask_to_buy_enabled=ask_to_buy_enabled,
        )

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        """All transactions issued so far, oldest first."""
        return tuple(self._transactions)

    def is_finished(self, transaction_id: str) -> bool:
        """Check if the transaction has been finished."""
        return transaction_id in self._finished

    def has_pending(self, product_id: str) -> bool:
        """Check if an Ask to Buy request is waiting for this product."""
        return product_id in self._pending

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def _sign(self, transaction: Transaction) -> str:
        claims = transaction.to_claims()
        claims["signedDate"] = int(self._clock().timestamp() * 1000)
        return jwt.encode(claims, self._signing_key, algorithm=_JWS_ALGORITHM)

    def verify(self, jws_representation: str) -> VerificationResult:
        """
        Check a signed transaction locally.

        A bad signature still yields a result; the payload is decoded without
        verification and the error is attached.
        """
        try:
            claims = jwt.decode(
                jws_representation,
                self._verification_key,
                algorithms=[_JWS_ALGORITHM],
            )
            return VerificationResult(
                transaction=Transaction.from_claims(claims),
                jws_representation=jws_representation,
            )
        except jwt.InvalidSignatureError as exc:
            claims = jwt.decode(jws_representation, options={"verify_signature": False})
            return VerificationResult(
                transaction=Transaction.from_claims(claims),
                jws_representation=jws_representation,
                error=str(exc) or "Signature verification failed",
            )

    def _issue(self, product: Product, app_account_token: str | None) -> Transaction:
        now = self._clock()
        transaction_id = str(self._next_id)
        self._next_id += 1

        previous = next((t for t in self._transactions if t.product_id == product.id), None)
        original_id = previous.original_id if previous else transaction_id
        original_purchase_date = previous.original_purchase_date if previous else now

        expiration_date = None
        if product.type == ProductType.AUTO_RENEWABLE and product.subscription_period:
            expiration_date = now + parse_subscription_period(product.subscription_period)

        transaction = Transaction(
            id=transaction_id,
            original_id=original_id,
            product_id=product.id,
            bundle_id=self.bundle_id,
            purchase_date=now,
            original_purchase_date=original_purchase_date,
            type=product.type,
            environment=self.environment,
            expiration_date=expiration_date,
            app_account_token=app_account_token,
        )
        self._transactions.append(transaction)

        logger.info(
            "local_store_transaction_issued",
            transaction_id=transaction_id,
            product_id=product.id,
            expiration_date=expiration_date.isoformat() if expiration_date else None,
        )
        return transaction

    # ------------------------------------------------------------------
    # Store protocol
    # ------------------------------------------------------------------

    async def fetch_products(self, product_ids: Sequence[str]) -> list[Product]:
        """Return the configured products matching ``product_ids``."""
        if self.unavailable:
            raise ProductFetchError("store unavailable")
        return [self._products[pid] for pid in product_ids if pid in self._products]

    async def purchase(
        self,
        product: Product,
        *,
        simulates_ask_to_buy_in_sandbox: bool = False,
        app_account_token: str | None = None,
    ) -> PurchaseResult:
        """Run a purchase without any payment sheet."""
        if self.unavailable:
            raise PurchaseError(product.id, "store unavailable")
        if product.id not in self._products:
            raise PurchaseError(product.id, "product not available in this storefront")

        if self.decline_purchases:
            return PurchaseResult(status=PurchaseStatus.USER_CANCELLED)

        if (
            simulates_ask_to_buy_in_sandbox
            and self.ask_to_buy_enabled
            and self.environment.lower() != "production"
        ):
            self._pending[product.id] = app_account_token
            logger.info("local_store_purchase_pending", product_id=product.id)
            return PurchaseResult(status=PurchaseStatus.PENDING)

        transaction = self._issue(product, app_account_token)
        return PurchaseResult(
            status=PurchaseStatus.SUCCESS,
            verification=self.verify(self._sign(transaction)),
        )

    def approve_pending(self, product_id: str) -> Transaction:
        """
        Approve an Ask to Buy request.

        The resulting transaction is delivered through the update feed.

        Raises:
            PurchaseError: If nothing is pending for this product
        """
        if product_id not in self._pending:
            raise PurchaseError(product_id, "no pending purchase")
        app_account_token = self._pending.pop(product_id)
        transaction = self._issue(self._products[product_id], app_account_token)
        self._updates.put_nowait(self.verify(self._sign(transaction)))
        return transaction

    def revoke(self, transaction_id: str) -> Transaction:
        """
        Revoke a transaction (refund) and announce it on the update feed.

        Raises:
            KeyError: If the transaction does not exist
        """
        for index, transaction in enumerate(self._transactions):
            if transaction.id == transaction_id:
                revoked = replace(transaction, revocation_date=self._clock())
                self._transactions[index] = revoked
                self._updates.put_nowait(self.verify(self._sign(revoked)))
                logger.info("local_store_transaction_revoked", transaction_id=transaction_id)
                return revoked
        raise KeyError(transaction_id)

    async def transaction_updates(self) -> AsyncIterator[VerificationResult]:
        """Yield updates until the store is closed."""
        while True:
            result = await self._updates.get()
            if result is None:
                return
            yield result

    async def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        """
        Yield the latest transaction per product.

        Consumables, revoked transactions and expired transactions that were
        already finished are left out.
        """
        now = self._clock()
        latest: dict[str, Transaction] = {}
        for transaction in self._transactions:
            latest[transaction.product_id] = transaction

        for transaction in latest.values():
            if transaction.type == ProductType.CONSUMABLE or transaction.is_revoked():
                continue
            if transaction.is_expired(now) and self.is_finished(transaction.id):
                continue
            yield self.verify(self._sign(transaction))

    async def finish(self, transaction: Transaction) -> None:
        """Mark the transaction as delivered."""
        self._finished.add(transaction.id)

    async def sync(self) -> None:
        """Re-deliver current entitlements through the update feed."""
        if self.unavailable:
            raise StoreSyncError("store unavailable")
        async for result in self.current_entitlements():
            self._updates.put_nowait(result)

    async def close(self) -> None:
        """End the update feed."""
        if not self._closed:
            self._closed = True
            self._updates.put_nowait(None)
