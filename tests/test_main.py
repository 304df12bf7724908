"""
Tests for the application entry points that need no running store.
"""

import httpx
import pytest
from httpx import ASGITransport

from entitlements.config import settings
from entitlements.main import app


@pytest.fixture
def client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_root(client: httpx.AsyncClient):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"
    assert response.json()["service"] == "StoreKit Entitlements Demo"


@pytest.mark.asyncio
async def test_metrics_exposed(client: httpx.AsyncClient):
    """Requests through the middleware show up in the Prometheus output."""
    await client.get("/")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "entitlements_http_requests_total" in response.text


@pytest.mark.asyncio
async def test_metrics_disabled(client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch):
    """Turning metrics off hides the Prometheus endpoint."""
    monkeypatch.setattr(settings, "metrics_enabled", False)

    response = await client.get("/metrics")

    assert response.status_code == 404
