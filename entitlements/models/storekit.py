"""
StoreKit domain models - Immutable dataclasses for products and transactions.

NO DICTIONARIES - All data uses strongly typed models.

Transactions travel as JWS (JSON Web Signature) compact strings; the claim
names follow the StoreKit 2 signed transaction payload.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from entitlements.exceptions import VerificationError


class ProductType(str, Enum):
    """StoreKit product types."""

    AUTO_RENEWABLE = "Auto-Renewable Subscription"
    NON_RENEWING = "Non-Renewing Subscription"
    CONSUMABLE = "Consumable"
    NON_CONSUMABLE = "Non-Consumable"


@dataclass(frozen=True)
class Product:
    """Purchasable product metadata."""

    id: str  # Product identifier from App Store Connect
    display_name: str
    description: str
    price: Decimal
    display_price: str  # Localized price string, e.g. "$9.99"
    type: ProductType
    subscription_period: str | None = None  # ISO-8601 duration, e.g. "P1M"
    has_introductory_offer: bool = False

    def __post_init__(self) -> None:
        """Validate product fields."""
        if not self.id:
            raise ValueError("Product ID required")
        if self.price < 0:
            raise ValueError(f"Price must not be negative: {self.price}")

    def is_subscription(self) -> bool:
        """Check if this product is an auto-renewable subscription."""
        return self.type == ProductType.AUTO_RENEWABLE


def _from_millis(value: object) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)  # type: ignore[call-overload]


def to_millis(value: datetime | None) -> int | None:
    """Convert a datetime to epoch milliseconds (JWS claim format)."""
    if value is None:
        return None
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class Transaction:
    """A signed purchase record issued by the store."""

    id: str
    original_id: str
    product_id: str
    bundle_id: str
    purchase_date: datetime
    original_purchase_date: datetime
    type: ProductType
    environment: str  # "Xcode", "Sandbox" or "Production"

    expiration_date: datetime | None = None  # Subscriptions only
    revocation_date: datetime | None = None
    app_account_token: str | None = None

    def is_expired(self, now: datetime) -> bool:
        """Check if the transaction's expiration date lies before ``now``."""
        return self.expiration_date is not None and self.expiration_date < now

    def is_revoked(self) -> bool:
        """Check if the store revoked this transaction (refund, family sharing)."""
        return self.revocation_date is not None

    def to_claims(self) -> dict[str, object]:
        """Serialize into StoreKit signed transaction claims."""
        claims: dict[str, object] = {
            "transactionId": self.id,
            "originalTransactionId": self.original_id,
            "productId": self.product_id,
            "bundleId": self.bundle_id,
            "purchaseDate": to_millis(self.purchase_date),
            "originalPurchaseDate": to_millis(self.original_purchase_date),
            "type": self.type.value,
            "environment": self.environment,
        }
        if self.expiration_date is not None:
            claims["expiresDate"] = to_millis(self.expiration_date)
        if self.revocation_date is not None:
            claims["revocationDate"] = to_millis(self.revocation_date)
        if self.app_account_token is not None:
            claims["appAccountToken"] = self.app_account_token
        return claims

    @classmethod
    def from_claims(cls, data: dict[str, object]) -> "Transaction":
        """Parse a transaction from a decoded JWS payload."""
        try:
            purchase_date = _from_millis(data["purchaseDate"])
            if purchase_date is None:
                raise VerificationError("Transaction payload has no purchase date")
            return cls(
                id=str(data["transactionId"]),
                original_id=str(data.get("originalTransactionId", data["transactionId"])),
                product_id=str(data["productId"]),
                bundle_id=str(data.get("bundleId", "")),
                purchase_date=purchase_date,
                original_purchase_date=_from_millis(data.get("originalPurchaseDate"))
                or purchase_date,
                type=ProductType(data.get("type", ProductType.AUTO_RENEWABLE.value)),
                environment=str(data.get("environment", "Production")),
                expiration_date=_from_millis(data.get("expiresDate")),
                revocation_date=_from_millis(data.get("revocationDate")),
                app_account_token=data.get("appAccountToken"),  # type: ignore[arg-type]
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise VerificationError(f"Malformed transaction payload: {exc}") from exc


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of the store's local signature check on a transaction.

    The payload of an unverified transaction is still readable, it just
    cannot be trusted.
    """

    transaction: Transaction
    jws_representation: str
    error: str | None = None

    @property
    def verified(self) -> bool:
        """True when the JWS signature checked out locally."""
        return self.error is None

    @property
    def payload_value(self) -> Transaction:
        """Return the transaction, raising if it failed verification."""
        if self.error is not None:
            raise VerificationError(self.error)
        return self.transaction


class PurchaseStatus(str, Enum):
    """Result of a purchase attempt."""

    SUCCESS = "success"
    PENDING = "pending"  # Waiting on Ask to Buy / SCA approval
    USER_CANCELLED = "user_cancelled"
    UNKNOWN = "unknown"
    FAILED = "failed"  # The store raised before a result was produced


@dataclass(frozen=True)
class PurchaseResult:
    """Purchase outcome; carries the signed transaction on success."""

    status: PurchaseStatus
    verification: VerificationResult | None = None

    def __post_init__(self) -> None:
        """A successful purchase must carry its transaction."""
        if self.status == PurchaseStatus.SUCCESS and self.verification is None:
            raise ValueError("Successful purchase requires a verification result")
