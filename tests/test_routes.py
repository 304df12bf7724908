"""
Tests for API Routes.

Runs the routers in a bare FastAPI app with a manager wired to the local
store and the fake validator.
"""

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport

from entitlements.api.routes import router
from entitlements.services.local_store import LocalStore
from entitlements.services.subscriptions_manager import SubscriptionsManager


@pytest.fixture
def app(manager: SubscriptionsManager) -> FastAPI:
    """FastAPI app serving the routes for one manager."""
    app = FastAPI()
    app.include_router(router)
    app.state.subscriptions_manager = manager
    return app


@pytest.fixture
def client(app: FastAPI) -> httpx.AsyncClient:
    """HTTP client talking to the app in-process."""
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class TestProducts:
    """Tests for product endpoints."""

    @pytest.mark.asyncio
    async def test_empty_before_load(self, client: httpx.AsyncClient):
        response = await client.get("/v1/products")

        assert response.status_code == 200
        assert response.json() == {"products": []}

    @pytest.mark.asyncio
    async def test_refresh_loads_sorted(self, client: httpx.AsyncClient):
        """Refresh fetches products, most expensive first."""
        response = await client.post("/v1/products/refresh")

        assert response.status_code == 200
        products = response.json()["products"]
        assert [p["id"] for p in products] == ["monthly_with_intro", "weekly_with_intro"]
        assert products[0]["display_price"] == "$9.99"
        assert products[0]["subscription_period"] == "P1M"
        assert products[0]["type"] == "Auto-Renewable Subscription"


class TestEntitlement:
    """Tests for GET /v1/entitlement."""

    @pytest.mark.asyncio
    async def test_initially_false(self, client: httpx.AsyncClient):
        response = await client.get("/v1/entitlement")

        assert response.json() == {"has_pro": False}


class TestPurchase:
    """Tests for POST /v1/purchases."""

    @pytest.mark.asyncio
    async def test_purchase_grants_entitlement(self, client: httpx.AsyncClient):
        """Buying loads the catalogue on demand and validates the purchase."""
        response = await client.post("/v1/purchases", json={"product_id": "monthly_with_intro"})

        assert response.status_code == 200
        assert response.json() == {
            "product_id": "monthly_with_intro",
            "status": "success",
            "has_pro": True,
        }

        entitlement = await client.get("/v1/entitlement")
        assert entitlement.json() == {"has_pro": True}

    @pytest.mark.asyncio
    async def test_unknown_product(self, client: httpx.AsyncClient):
        response = await client.post("/v1/purchases", json={"product_id": "lifetime"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown product ID: lifetime"

    @pytest.mark.asyncio
    async def test_empty_product_id_rejected(self, client: httpx.AsyncClient):
        response = await client.post("/v1/purchases", json={"product_id": ""})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_cancelled_purchase(self, client: httpx.AsyncClient, store: LocalStore):
        store.decline_purchases = True

        response = await client.post("/v1/purchases", json={"product_id": "weekly_with_intro"})

        assert response.json()["status"] == "user_cancelled"
        assert response.json()["has_pro"] is False

    @pytest.mark.asyncio
    async def test_malformed_validator_answer(self, client: httpx.AsyncClient, validator):
        """An unusable validator answer still completes the purchase request."""
        validator.malformed = 1

        response = await client.post("/v1/purchases", json={"product_id": "monthly_with_intro"})

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert response.json()["has_pro"] is False


class TestRestore:
    """Tests for POST /v1/purchases/restore."""

    @pytest.mark.asyncio
    async def test_restore_success(self, client: httpx.AsyncClient):
        response = await client.post("/v1/purchases/restore")

        assert response.json() == {"synced": True, "has_pro": False}

    @pytest.mark.asyncio
    async def test_restore_failure(self, client: httpx.AsyncClient, store: LocalStore):
        store.unavailable = True

        response = await client.post("/v1/purchases/restore")

        assert response.status_code == 200
        assert response.json()["synced"] is False


class TestVerifiedPurchases:
    """Tests for GET /v1/purchases/verified."""

    @pytest.mark.asyncio
    async def test_null_before_validation(self, client: httpx.AsyncClient):
        response = await client.get("/v1/purchases/verified")

        assert response.json() == {"purchases": None}

    @pytest.mark.asyncio
    async def test_lists_validator_collection(self, client: httpx.AsyncClient):
        await client.post("/v1/purchases", json={"product_id": "weekly_with_intro"})

        response = await client.get("/v1/purchases/verified")

        purchases = response.json()["purchases"]
        assert len(purchases) == 1
        assert purchases[0]["id"] == "apple:weekly_with_intro"
        assert purchases[0]["is_expired"] is False
        assert purchases[0]["platform"] == "apple"


class TestAskToBuyApproval:
    """Tests for the sandbox approval endpoint."""

    @pytest.mark.asyncio
    async def test_approve_pending(
        self,
        client: httpx.AsyncClient,
        store: LocalStore,
        manager: SubscriptionsManager,
    ):
        """Approval queues the transaction for the observer."""
        store.ask_to_buy_enabled = True
        purchase = await client.post("/v1/purchases", json={"product_id": "monthly_with_intro"})
        assert purchase.json()["status"] == "pending"

        response = await client.post("/v1/sandbox/ask-to-buy/monthly_with_intro/approve")

        assert response.status_code == 200
        body = response.json()
        assert body["product_id"] == "monthly_with_intro"
        assert body["transaction_id"] == store.transactions[-1].id

        await store.close()
        await manager.observe_transaction_updates()
        entitlement = await client.get("/v1/entitlement")
        assert entitlement.json() == {"has_pro": True}

    @pytest.mark.asyncio
    async def test_nothing_pending(self, client: httpx.AsyncClient):
        response = await client.post("/v1/sandbox/ask-to-buy/monthly_with_intro/approve")

        assert response.status_code == 409
        assert response.json()["detail"] == "no pending purchase"


@pytest.mark.asyncio
async def test_health(client: httpx.AsyncClient):
    response = await client.get("/health")

    assert response.json() == {"status": "healthy", "has_pro": False, "product_count": 0}
