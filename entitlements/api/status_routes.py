"""
Status API routes - Health checks for the entitlements service dependencies.

Public endpoint (no auth). Results are cached briefly to prevent abuse.
"""

import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from pydantic import BaseModel, Field
from structlog import get_logger

from entitlements.api.dependencies import get_subscriptions_manager
from entitlements.config import get_settings
from entitlements.services.local_store import LocalStore
from entitlements.services.subscriptions_manager import SubscriptionsManager

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Timeout for health checks
CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single provider."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "storekit-entitlements"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


async def check_iaptic(base_url: str) -> ProviderStatus:
    """Check that the iaptic validator answers at all."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            response = await client.get(base_url)
            latency_ms = int((time.perf_counter() - start) * 1000)

            # Any non-5xx answer means the validator is up
            if response.status_code < 500:
                status = (
                    StatusLevel.DEGRADED
                    if latency_ms > DEGRADED_LATENCY_THRESHOLD
                    else StatusLevel.OPERATIONAL
                )
                return ProviderStatus(
                    status=status,
                    latency_ms=latency_ms,
                    last_check=timestamp,
                    message="High latency" if status == StatusLevel.DEGRADED else None,
                )

            return ProviderStatus(
                status=StatusLevel.DEGRADED,
                latency_ms=latency_ms,
                last_check=timestamp,
                message=f"Unexpected status: {response.status_code}",
            )
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("iaptic_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


def check_store(manager: SubscriptionsManager) -> ProviderStatus:
    """Report whether the purchase subsystem is accepting requests."""
    timestamp = datetime.now(UTC).isoformat()
    store = manager.store

    if isinstance(store, LocalStore) and store.unavailable:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Store unavailable",
        )

    return ProviderStatus(
        status=StatusLevel.OPERATIONAL,
        latency_ms=0,
        last_check=timestamp,
        message=f"{len(manager.products)} products loaded",
    )


def _status_cache(app: FastAPI) -> dict[str, tuple[datetime, ServiceStatusResponse]]:
    """Per-application cache of the last status answer."""
    cache: dict[str, tuple[datetime, ServiceStatusResponse]] | None = getattr(
        app.state, "status_cache", None
    )
    if cache is None:
        cache = {}
        app.state.status_cache = cache
    return cache


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status(
    request: Request,
    manager: SubscriptionsManager = Depends(get_subscriptions_manager),
) -> ServiceStatusResponse:
    """
    Get service status.

    Checks the validator and the store. Cached for 10 seconds.
    """
    cache = _status_cache(request.app)
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in cache:
        cached_time, cached_response = cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    providers = {
        "iaptic": await check_iaptic(manager.iaptic.config.base_url),
        "store": check_store(manager),
    }

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=get_settings().api_version,
        providers=providers,
    )

    cache[cache_key] = (now, response)

    return response
