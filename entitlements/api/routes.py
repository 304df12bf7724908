"""
API Routes - FastAPI endpoints the UI layer talks to.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from entitlements.api.dependencies import get_subscriptions_manager
from entitlements.exceptions import ProductNotFoundError, PurchaseError
from entitlements.models.api import (
    AskToBuyApprovalResponse,
    EntitlementResponse,
    HealthResponse,
    ProductListResponse,
    ProductResponse,
    PurchaseRequest,
    PurchaseResponse,
    RestoreResponse,
    VerifiedPurchaseItem,
    VerifiedPurchasesResponse,
)
from entitlements.services.local_store import LocalStore
from entitlements.services.subscriptions_manager import SubscriptionsManager

logger = get_logger(__name__)

router = APIRouter()


def _product_list(manager: SubscriptionsManager) -> ProductListResponse:
    return ProductListResponse(
        products=[ProductResponse.from_product(p) for p in manager.products],
    )


@router.get("/health", response_model=HealthResponse)
async def health(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> HealthResponse:
    """Liveness check."""
    return HealthResponse(
        status="healthy",
        has_pro=manager.has_pro,
        product_count=len(manager.products),
    )


@router.get("/v1/products", response_model=ProductListResponse)
async def list_products(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> ProductListResponse:
    """Products offered to the user, most expensive first."""
    return _product_list(manager)


@router.post("/v1/products/refresh", response_model=ProductListResponse)
async def refresh_products(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> ProductListResponse:
    """Reload products from the store; a failed fetch keeps the previous list."""
    await manager.load_products()
    return _product_list(manager)


@router.get("/v1/entitlement", response_model=EntitlementResponse)
async def get_entitlement(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> EntitlementResponse:
    """Current entitlement flag."""
    return EntitlementResponse(has_pro=manager.has_pro)


@router.post("/v1/purchases", response_model=PurchaseResponse)
async def purchase(
    request: PurchaseRequest,
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> PurchaseResponse:
    """Buy a product and validate the transaction."""
    try:
        product = await manager.find_product(request.product_id)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    purchase_status = await manager.buy_product(product)
    return PurchaseResponse(
        product_id=product.id,
        status=purchase_status,
        has_pro=manager.has_pro,
    )


@router.post("/v1/purchases/restore", response_model=RestoreResponse)
async def restore_purchases(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> RestoreResponse:
    """Sync with the store; restored transactions arrive through the update feed."""
    synced = await manager.restore_purchases()
    return RestoreResponse(synced=synced, has_pro=manager.has_pro)


@router.get("/v1/purchases/verified", response_model=VerifiedPurchasesResponse)
async def verified_purchases(
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> VerifiedPurchasesResponse:
    """Purchases the validator reported on its last successful answer."""
    purchases = manager.iaptic.get_verified_purchases()
    if purchases is None:
        return VerifiedPurchasesResponse(purchases=None)
    return VerifiedPurchasesResponse(
        purchases=[VerifiedPurchaseItem.from_purchase(p) for p in purchases],
    )


@router.post(
    "/v1/sandbox/ask-to-buy/{product_id}/approve",
    response_model=AskToBuyApprovalResponse,
)
async def approve_ask_to_buy(
    product_id: str,
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> AskToBuyApprovalResponse:
    """Approve a pending Ask to Buy request on the local store."""
    store = manager.store
    if not isinstance(store, LocalStore):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Store does not support Ask to Buy approval",
        )

    try:
        transaction = store.approve_pending(product_id)
    except PurchaseError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc

    logger.info("ask_to_buy_approved", product_id=product_id, transaction_id=transaction.id)
    return AskToBuyApprovalResponse(product_id=product_id, transaction_id=transaction.id)
