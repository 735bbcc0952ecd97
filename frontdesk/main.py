"""Main FastAPI application."""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from frontdesk.api import ai, blocklist, calls, health, realtime
from frontdesk.api.webhooks import voice
from frontdesk.core.config import Settings, settings as default_settings
from frontdesk.core.dependencies import AppServices, build_services
from frontdesk.core.logging import setup_logging
from frontdesk.db.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    services: AppServices = app.state.services
    # Startup
    setup_logging(services.settings.log_level)
    if services.engine is not None:
        await init_db(services.engine)
    sweeper = asyncio.create_task(services.manager.run_sweeper())
    logger.info(f"Front desk ready - Telephony provider: {services.provider.name}")
    yield
    # Shutdown
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await services.aclose()


def create_app(settings: Optional[Settings] = None, services: Optional[AppServices] = None) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(
        title="AI Front Desk",
        description="AI call screening front desk with live owner decisions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origin_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-API-Key", "Authorization"],
    )

    @app.middleware("http")
    async def no_store(request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store"
        return response

    app.include_router(health.router, tags=["health"])
    app.include_router(voice.router, tags=["webhooks"])
    app.include_router(ai.router, tags=["ai"])
    app.include_router(calls.router, tags=["calls"])
    app.include_router(blocklist.router, tags=["security"])
    app.include_router(realtime.router, tags=["realtime"])
    return app


app = create_app()
