"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from entitlements.models.iaptic import VerifiedPurchase
from entitlements.models.storekit import Product, PurchaseStatus


class ProductResponse(BaseModel):
    """A purchasable product."""

    id: str
    display_name: str
    description: str
    price: Decimal
    display_price: str
    type: str
    subscription_period: str | None = None
    has_introductory_offer: bool = False

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        """Build from the domain model."""
        return cls(
            id=product.id,
            display_name=product.display_name,
            description=product.description,
            price=product.price,
            display_price=product.display_price,
            type=product.type.value,
            subscription_period=product.subscription_period,
            has_introductory_offer=product.has_introductory_offer,
        )


class ProductListResponse(BaseModel):
    """GET /v1/products response."""

    products: list[ProductResponse]


class EntitlementResponse(BaseModel):
    """GET /v1/entitlement response."""

    has_pro: bool


class PurchaseRequest(BaseModel):
    """POST /v1/purchases request body."""

    product_id: str = Field(..., min_length=1, max_length=255)


class PurchaseResponse(BaseModel):
    """POST /v1/purchases response."""

    product_id: str
    status: PurchaseStatus
    has_pro: bool


class RestoreResponse(BaseModel):
    """POST /v1/purchases/restore response."""

    synced: bool
    has_pro: bool


class VerifiedPurchaseItem(BaseModel):
    """One purchase from the validator's collection."""

    id: str
    purchase_id: str | None = None
    transaction_id: str | None = None
    platform: str | None = None
    purchase_date: datetime | None = None
    expiry_date: datetime | None = None
    is_expired: bool | None = None
    is_trial_period: bool | None = None
    is_intro_period: bool | None = None
    renewal_intent: str | None = None

    @classmethod
    def from_purchase(cls, purchase: VerifiedPurchase) -> "VerifiedPurchaseItem":
        """Build from the domain model."""
        return cls(
            id=purchase.id,
            purchase_id=purchase.purchase_id,
            transaction_id=purchase.transaction_id,
            platform=purchase.platform,
            purchase_date=purchase.purchase_date,
            expiry_date=purchase.expiry_date,
            is_expired=purchase.is_expired,
            is_trial_period=purchase.is_trial_period,
            is_intro_period=purchase.is_intro_period,
            renewal_intent=purchase.renewal_intent,
        )


class VerifiedPurchasesResponse(BaseModel):
    """GET /v1/purchases/verified response; null before the first validation."""

    purchases: list[VerifiedPurchaseItem] | None


class AskToBuyApprovalResponse(BaseModel):
    """POST /v1/sandbox/ask-to-buy/{product_id}/approve response."""

    product_id: str
    transaction_id: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    has_pro: bool
    product_count: int
