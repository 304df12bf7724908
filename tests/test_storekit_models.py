"""
Tests for StoreKit domain models.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from entitlements.exceptions import VerificationError
from entitlements.models.storekit import (
    Product,
    ProductType,
    PurchaseResult,
    PurchaseStatus,
    Transaction,
    VerificationResult,
    to_millis,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def make_transaction(**overrides) -> Transaction:
    fields = {
        "id": "2000000000000001",
        "original_id": "2000000000000001",
        "product_id": "monthly_with_intro",
        "bundle_id": "com.example.storekit-demo",
        "purchase_date": NOW,
        "original_purchase_date": NOW,
        "type": ProductType.AUTO_RENEWABLE,
        "environment": "Xcode",
        "expiration_date": NOW + timedelta(days=30),
    }
    fields.update(overrides)
    return Transaction(**fields)


class TestProduct:
    """Tests for Product validation."""

    def test_valid_product(self):
        """Test creating valid product."""
        product = Product(
            id="monthly_with_intro",
            display_name="Monthly Pro",
            description="",
            price=Decimal("9.99"),
            display_price="$9.99",
            type=ProductType.AUTO_RENEWABLE,
            subscription_period="P1M",
        )

        assert product.is_subscription()
        assert product.has_introductory_offer is False

    def test_missing_id(self):
        """Test that missing product ID raises ValueError."""
        with pytest.raises(ValueError, match="Product ID required"):
            Product(
                id="",
                display_name="x",
                description="",
                price=Decimal("1"),
                display_price="$1.00",
                type=ProductType.CONSUMABLE,
            )

    def test_negative_price(self):
        """Test that a negative price raises ValueError."""
        with pytest.raises(ValueError, match="must not be negative"):
            Product(
                id="coins",
                display_name="Coins",
                description="",
                price=Decimal("-1"),
                display_price="-$1.00",
                type=ProductType.CONSUMABLE,
            )

    def test_consumable_is_not_subscription(self):
        """Only auto-renewables count as subscriptions."""
        product = Product(
            id="coins",
            display_name="Coins",
            description="",
            price=Decimal("0.99"),
            display_price="$0.99",
            type=ProductType.CONSUMABLE,
        )
        assert not product.is_subscription()


class TestTransaction:
    """Tests for Transaction helpers."""

    def test_not_expired_before_expiration(self):
        """Transaction is active before its expiration date."""
        assert not make_transaction().is_expired(NOW + timedelta(days=29))

    def test_expired_after_expiration(self):
        """Transaction is expired once the expiration date has passed."""
        assert make_transaction().is_expired(NOW + timedelta(days=31))

    def test_expiration_boundary_not_expired(self):
        """Exactly at the expiration date the transaction is not yet expired."""
        transaction = make_transaction()
        assert not transaction.is_expired(transaction.expiration_date)

    def test_no_expiration_never_expires(self):
        """Non-subscription transactions never expire."""
        transaction = make_transaction(expiration_date=None, type=ProductType.NON_CONSUMABLE)
        assert not transaction.is_expired(NOW + timedelta(days=10_000))

    def test_revoked(self):
        """Revocation date marks the transaction revoked."""
        assert make_transaction(revocation_date=NOW).is_revoked()
        assert not make_transaction().is_revoked()

    def test_claims_use_storekit_names(self):
        """Claims carry StoreKit field names and millisecond timestamps."""
        claims = make_transaction(app_account_token="abc").to_claims()

        assert claims["transactionId"] == "2000000000000001"
        assert claims["productId"] == "monthly_with_intro"
        assert claims["purchaseDate"] == to_millis(NOW)
        assert claims["expiresDate"] == to_millis(NOW + timedelta(days=30))
        assert claims["appAccountToken"] == "abc"
        assert "revocationDate" not in claims

    def test_from_claims_restores_transaction(self):
        """Parsing the claims gives back an equal transaction."""
        transaction = make_transaction()
        assert Transaction.from_claims(transaction.to_claims()) == transaction

    def test_from_claims_defaults(self):
        """Optional claims fall back to sensible defaults."""
        transaction = Transaction.from_claims(
            {
                "transactionId": 42,
                "productId": "weekly_with_intro",
                "purchaseDate": to_millis(NOW),
            }
        )

        assert transaction.id == "42"
        assert transaction.original_id == "42"
        assert transaction.original_purchase_date == NOW
        assert transaction.environment == "Production"
        assert transaction.expiration_date is None

    def test_from_claims_missing_field(self):
        """Missing product ID raises VerificationError."""
        with pytest.raises(VerificationError, match="Malformed transaction payload"):
            Transaction.from_claims({"transactionId": "1", "purchaseDate": 0})

    def test_from_claims_null_purchase_date(self):
        """A null purchase date raises VerificationError."""
        with pytest.raises(VerificationError, match="no purchase date"):
            Transaction.from_claims(
                {"transactionId": "1", "productId": "x", "purchaseDate": None}
            )

    def test_immutable(self):
        """Test that Transaction is immutable."""
        with pytest.raises(AttributeError):
            make_transaction().product_id = "other"  # type: ignore[misc]


class TestVerificationResult:
    """Tests for VerificationResult."""

    def test_verified(self):
        """Result without error is verified and exposes the payload."""
        transaction = make_transaction()
        result = VerificationResult(transaction=transaction, jws_representation="a.b.c")

        assert result.verified
        assert result.payload_value == transaction

    def test_unverified_payload_raises(self):
        """Unverified result refuses to hand out its payload."""
        result = VerificationResult(
            transaction=make_transaction(),
            jws_representation="a.b.c",
            error="Signature verification failed",
        )

        assert not result.verified
        with pytest.raises(VerificationError, match="Signature verification failed"):
            result.payload_value


class TestPurchaseResult:
    """Tests for PurchaseResult."""

    def test_success_requires_verification(self):
        """A successful result without transaction raises ValueError."""
        with pytest.raises(ValueError, match="requires a verification result"):
            PurchaseResult(status=PurchaseStatus.SUCCESS)

    def test_pending_without_verification(self):
        """Pending purchases carry no transaction."""
        result = PurchaseResult(status=PurchaseStatus.PENDING)
        assert result.verification is None
