"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from puipr.config import get_settings
from puipr.database import close_db, get_engine, get_session_factory, init_db, wait_for_db
from puipr.db.schema import ensure_schema
from puipr.health.router import router as health_router
from puipr.ingest.router import router as ingest_router
from puipr.middleware import setup_middleware
from puipr.poller.service import Poller
from puipr.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await wait_for_db(get_engine())
    await ensure_schema(get_engine())

    poller: Poller | None = None
    if settings.poller_enabled:
        poller = Poller.from_settings(settings, get_session_factory())
        poller.start()
        logger.info(
            "poller_enabled",
            url=settings.tautulli_url,
            interval_seconds=poller.interval_seconds,
            length=poller.client.length,
        )
    else:
        logger.info("poller_disabled", hint="set PUIPR_TAUTULLI_URL and PUIPR_TAUTULLI_APIKEY to enable")
    app.state.poller = poller

    yield

    if poller is not None:
        await poller.stop()
    app.state.poller = None
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PUIPR",
        description="Plex User IP Recorder — which addresses Plex users connect from",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.poller = None

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(ingest_router)
    app.include_router(users_router)

    return app


app = create_app()
