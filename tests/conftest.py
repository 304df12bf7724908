"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes for testing:
- A controllable clock
- The local StoreKit store with the default catalogue
- A fake iaptic validator behind httpx.MockTransport
- A fully wired subscriptions manager
"""

import json
import os
from datetime import UTC, datetime, timedelta

import httpx
import jwt
import pytest

# Set required environment variables BEFORE importing package modules
os.environ.setdefault("IAPTIC_APP_NAME", "demo")
os.environ.setdefault("IAPTIC_PUBLIC_KEY", "test-public-key-0000-0000-0000-000000")
os.environ.setdefault("LOG_FORMAT", "console")

from entitlements.models.iaptic import IapticConfig
from entitlements.services.entitlement_manager import EntitlementManager
from entitlements.services.iaptic import IapticClient
from entitlements.services.local_store import LocalStore
from entitlements.services.storekit_config import DEFAULT_PRODUCTS
from entitlements.services.subscriptions_manager import SubscriptionsManager

SIGNING_KEY = "test-storekit-signing-key-0123456789abcdef"
BUNDLE_ID = "com.example.storekit-demo"
USERNAME = "demo_user"
VALIDATOR_URL = "https://validator.test"


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at a fixed instant."""
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))


# ============================================================================
# Store
# ============================================================================


@pytest.fixture
def store(clock: FakeClock) -> LocalStore:
    """Local store serving the default catalogue."""
    return LocalStore(
        DEFAULT_PRODUCTS,
        bundle_id=BUNDLE_ID,
        signing_key=SIGNING_KEY,
        clock=clock,
    )


@pytest.fixture
def monthly():
    """The monthly subscription product."""
    return next(p for p in DEFAULT_PRODUCTS if p.id == "monthly_with_intro")


@pytest.fixture
def weekly():
    """The weekly subscription product."""
    return next(p for p in DEFAULT_PRODUCTS if p.id == "weekly_with_intro")


# ============================================================================
# Validator
# ============================================================================


class FakeValidator:
    """
    In-memory stand-in for the iaptic validator.

    Records a purchase per original transaction and answers with the whole
    collection, flagging purchases whose expiry lies before the clock.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.requests: list[httpx.Request] = []
        self.bodies: list[dict] = []
        self.purchases: dict[str, dict] = {}
        self.reject = False
        self.fail_with_status: int | None = None
        self.malformed = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content)
        self.bodies.append(body)

        if self.fail_with_status is not None:
            return httpx.Response(self.fail_with_status, text="upstream unavailable")

        if self.malformed:
            self.malformed -= 1
            return httpx.Response(200, json={"ok": True, "data": ["unexpected"]})

        if self.reject:
            return httpx.Response(
                200,
                json={
                    "ok": False,
                    "code": 6778001,
                    "message": "Transaction rejected",
                    "status": 400,
                },
            )

        claims = jwt.decode(
            body["transaction"]["jwsRepresentation"],
            options={"verify_signature": False},
        )
        now_ms = int(self.clock().timestamp() * 1000)
        expires = claims.get("expiresDate")
        self.purchases[claims["originalTransactionId"]] = {
            "id": f"apple:{claims['productId']}",
            "purchaseId": f"apple:{claims['originalTransactionId']}",
            "transactionId": f"apple:{claims['transactionId']}",
            "platform": "apple",
            "purchaseDate": claims["purchaseDate"],
            "expiryDate": expires,
            "isExpired": bool(
                claims.get("revocationDate") or (expires is not None and expires < now_ms)
            ),
            "renewalIntent": "Renew",
        }
        return httpx.Response(
            200,
            json={
                "ok": True,
                "data": {
                    "id": body["id"],
                    "latest_receipt": True,
                    "collection": list(self.purchases.values()),
                },
            },
        )


@pytest.fixture
def validator(clock: FakeClock) -> FakeValidator:
    """Fake validator sharing the test clock."""
    return FakeValidator(clock)


@pytest.fixture
def iaptic_config() -> IapticConfig:
    """Validator configuration pointing at the fake."""
    return IapticConfig(
        app_name="demo",
        public_key="test-public-key",
        base_url=VALIDATOR_URL,
    )


@pytest.fixture
def iaptic(iaptic_config: IapticConfig, validator: FakeValidator) -> IapticClient:
    """iaptic client wired to the fake validator."""
    return IapticClient(
        iaptic_config,
        application_username=USERNAME,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(validator)),
    )


# ============================================================================
# Managers
# ============================================================================


@pytest.fixture
def entitlement_manager() -> EntitlementManager:
    """In-memory entitlement flag."""
    return EntitlementManager()


@pytest.fixture
def manager(
    store: LocalStore,
    iaptic: IapticClient,
    entitlement_manager: EntitlementManager,
    clock: FakeClock,
) -> SubscriptionsManager:
    """Subscriptions manager over the local store and fake validator."""
    return SubscriptionsManager(
        store,
        iaptic,
        entitlement_manager,
        product_ids=["monthly_with_intro", "weekly_with_intro"],
        bundle_id=BUNDLE_ID,
        application_username=USERNAME,
        clock=clock,
    )
