"""
Main Application - FastAPI application setup.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from entitlements.api.dependencies import build_subscriptions_manager
from entitlements.api.routes import router
from entitlements.api.status_routes import router as status_router
from entitlements.config import get_settings, settings
from entitlements.observability import get_logger, metrics, setup_logging
from entitlements.observability.metrics import track_http_request

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Starts the transaction observer on startup and tears it down on shutdown.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        environment=settings.storekit_environment,
        metrics_enabled=settings.metrics_enabled,
    )

    manager = build_subscriptions_manager(get_settings())
    app.state.subscriptions_manager = manager
    metrics.set_entitlement(manager.has_pro)

    await manager.load_products()
    manager.start()

    yield

    logger.info("application_shutting_down")
    await manager.store.close()
    await manager.stop()
    logger.info("transaction_observer_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    logger.info("request_started", method=method, path=endpoint, request_id=request_id)

    with track_http_request(endpoint, method) as tracker:
        response = await call_next(request)
        tracker.set_status_code(response.status_code)

    logger.info(
        "request_completed",
        method=method,
        path=endpoint,
        status_code=response.status_code,
        request_id=request_id,
    )
    return response


app.include_router(router)
app.include_router(status_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format; 404 when metrics are disabled.
    """
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "entitlements.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
