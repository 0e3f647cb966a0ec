"""FastAPI application factory — entry point for the billing service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing.config import Settings, get_settings
from billing.routers import admin, api, webhooks
from billing.services.webhook_processor import (
    ConfigurationError,
    WebhookProcessor,
    WebhookProcessorConfig,
)
from billing.utils import setup_logging

logger = logging.getLogger(__name__)


def build_webhook_processor(settings: Settings) -> WebhookProcessor | None:
    """Build the processor, failing fast on missing configuration outside debug mode."""
    try:
        config = WebhookProcessorConfig.from_settings(settings)
    except ConfigurationError as e:
        if not settings.debug:
            raise
        logger.warning("%s; Stripe webhook endpoint disabled", e)
        return None
    return WebhookProcessor(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Auto-create tables for SQLite (dev mode); PostgreSQL uses Alembic
    from billing.db.session import engine
    from billing.models import Base

    settings = get_settings()
    setup_logging(settings.debug)

    app.state.webhook_processor = build_webhook_processor(settings)

    if settings.database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    yield

    await engine.dispose()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.settings = settings

    # --- Routers ---
    app.include_router(api.router)
    app.include_router(admin.router)
    app.include_router(webhooks.router)

    return app


app = create_app()
