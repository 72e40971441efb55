from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from cashly_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.gift_cards import GiftCardCache, GiftCardService, GiftCardSyncCoordinator
from .services.square import SquareGiftCardClient
from .workers import GiftCardReconciliationWorker


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache = GiftCardCache(
        settings.gift_card_cache_path,
        max_discrepancies=settings.gift_card_discrepancy_limit,
    ).open()
    client = SquareGiftCardClient.from_settings()
    service = GiftCardService(client)
    coordinator = GiftCardSyncCoordinator(cache, service)
    worker = GiftCardReconciliationWorker(
        coordinator,
        interval_seconds=settings.gift_card_reconcile_interval_seconds,
    )

    app.state.gift_card_cache = cache
    app.state.gift_card_service = service
    app.state.gift_card_sync = coordinator
    app.state.gift_card_reconciliation_worker = worker

    sync_enabled = not settings.gift_card_sync_disabled
    if sync_enabled:
        worker.start()
        logger.info(
            "Gift card reconciliation enabled",
            interval_seconds=worker.interval_seconds,
            cache_path=str(cache.path),
        )
    else:
        logger.info(
            "Gift card reconciliation disabled",
            reason="gift_card_sync_disabled is true",
        )

    try:
        yield
    finally:
        if sync_enabled and worker.is_running:
            await worker.stop()
        await coordinator.drain()
        await client.aclose()
        cache.close()


def create_app() -> FastAPI:
    """Application factory for the Cashly billing console API."""
    configure_logging(
        service_name="cashly-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Cashly API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="cashly-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
