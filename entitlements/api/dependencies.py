"""
API Dependencies - Wiring of store, validator and entitlement flag.
"""

import httpx
from fastapi import Request

from entitlements.config import Settings
from entitlements.models.iaptic import IapticConfig
from entitlements.services.entitlement_manager import EntitlementManager
from entitlements.services.iaptic import IapticClient
from entitlements.services.local_store import LocalStore
from entitlements.services.storekit_config import DEFAULT_PRODUCTS, load_storekit_config
from entitlements.services.subscriptions_manager import SubscriptionsManager

_ENVIRONMENT_NAMES = {
    "xcode": "Xcode",
    "sandbox": "Sandbox",
    "production": "Production",
}


def build_store(settings: Settings) -> LocalStore:
    """Create the local StoreKit store from settings."""
    if settings.storekit_config_path:
        products = load_storekit_config(settings.storekit_config_path)
    else:
        products = list(DEFAULT_PRODUCTS)

    return LocalStore(
        products,
        bundle_id=settings.bundle_id,
        signing_key=settings.storekit_signing_key,
        environment=_ENVIRONMENT_NAMES[settings.storekit_environment.lower()],
        ask_to_buy_enabled=settings.storekit_ask_to_buy,
    )


def build_subscriptions_manager(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> SubscriptionsManager:
    """
    Assemble the subscriptions manager from settings.

    Args:
        settings: Application settings
        http_client: Shared client for validator calls

    Raises:
        StoreKitConfigError: If the configured .storekit file is invalid
    """
    iaptic = IapticClient(
        IapticConfig(
            app_name=settings.iaptic_app_name,
            public_key=settings.iaptic_public_key,
            base_url=settings.iaptic_base_url,
            timeout=settings.iaptic_timeout,
        ),
        application_username=settings.application_username,
        http_client=http_client,
    )
    return SubscriptionsManager(
        build_store(settings),
        iaptic,
        EntitlementManager(settings.entitlement_state_path or None),
        product_ids=settings.product_ids,
        bundle_id=settings.bundle_id,
        application_username=settings.application_username,
    )


def get_subscriptions_manager(request: Request) -> SubscriptionsManager:
    """FastAPI dependency returning the manager created at startup."""
    manager: SubscriptionsManager = request.app.state.subscriptions_manager
    return manager
