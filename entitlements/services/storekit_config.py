"""
StoreKit configuration loader.

Reads Xcode ``.storekit`` files (JSON) into Product models so the local
testing store serves the same catalogue the app was built against.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path

from structlog import get_logger

from entitlements.exceptions import StoreKitConfigError
from entitlements.models.storekit import Product, ProductType

logger = get_logger(__name__)

_PRODUCT_TYPES = {
    "Consumable": ProductType.CONSUMABLE,
    "NonConsumable": ProductType.NON_CONSUMABLE,
    "NonRenewingSubscription": ProductType.NON_RENEWING,
    "RecurringSubscription": ProductType.AUTO_RENEWABLE,
}

# Catalogue used when no configuration file is given
DEFAULT_PRODUCTS: tuple[Product, ...] = (
    Product(
        id="monthly_with_intro",
        display_name="Monthly Pro",
        description="Pro access billed monthly, first week free",
        price=Decimal("9.99"),
        display_price="$9.99",
        type=ProductType.AUTO_RENEWABLE,
        subscription_period="P1M",
        has_introductory_offer=True,
    ),
    Product(
        id="weekly_with_intro",
        display_name="Weekly Pro",
        description="Pro access billed weekly, first three days free",
        price=Decimal("2.99"),
        display_price="$2.99",
        type=ProductType.AUTO_RENEWABLE,
        subscription_period="P1W",
        has_introductory_offer=True,
    ),
)


def format_display_price(price: Decimal) -> str:
    """Format a price the way the USA storefront shows it."""
    return f"${price:.2f}"


def _parse_product(raw: dict, path: str) -> Product:
    try:
        product_id = raw["productID"]
        price = Decimal(str(raw["displayPrice"]))
        product_type = _PRODUCT_TYPES[raw["type"]]
    except KeyError as exc:
        raise StoreKitConfigError(path, f"missing or unknown field {exc}") from exc
    except InvalidOperation as exc:
        raise StoreKitConfigError(path, f"invalid price {raw.get('displayPrice')!r}") from exc

    localizations = raw.get("localizations") or [{}]
    localization = localizations[0]

    try:
        return Product(
            id=product_id,
            display_name=localization.get("displayName") or raw.get("referenceName") or product_id,
            description=localization.get("description", ""),
            price=price,
            display_price=format_display_price(price),
            type=product_type,
            subscription_period=raw.get("recurringSubscriptionPeriod"),
            has_introductory_offer=raw.get("introductoryOffer") is not None,
        )
    except ValueError as exc:
        raise StoreKitConfigError(path, str(exc)) from exc


def parse_storekit_config(data: dict, path: str = "<memory>") -> list[Product]:
    """
    Extract products from a decoded StoreKit configuration.

    Args:
        data: Decoded ``.storekit`` JSON document
        path: Source name used in error messages

    Returns:
        Products in file order (plain products, then non-renewing
        subscriptions, then subscription groups)

    Raises:
        StoreKitConfigError: If a product entry is malformed
    """
    if not isinstance(data, dict):
        raise StoreKitConfigError(path, "top-level JSON value must be an object")

    products: list[Product] = []
    for raw in data.get("products", []):
        products.append(_parse_product(raw, path))
    for raw in data.get("nonRenewingSubscriptions", []):
        products.append(_parse_product(raw, path))
    for group in data.get("subscriptionGroups", []):
        for raw in group.get("subscriptions", []):
            products.append(_parse_product(raw, path))

    return products


def load_storekit_config(path: str | Path) -> list[Product]:
    """
    Load products from a ``.storekit`` file.

    Raises:
        StoreKitConfigError: If the file is unreadable or malformed
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise StoreKitConfigError(str(path), f"cannot read file: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise StoreKitConfigError(str(path), f"invalid JSON: {exc}") from exc

    products = parse_storekit_config(data, str(path))
    logger.info("storekit_config_loaded", path=str(path), product_count=len(products))
    return products
