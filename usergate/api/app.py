"""
FastAPI application for the user management service.

This is the HTTP API the dashboard frontend and other services talk to.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from usergate.api.handlers import register_exception_handlers
from usergate.auth.routes import router as auth_router
from usergate.config import get_settings
from usergate.core.utils import utc_now
from usergate.integrations.sentry import init_sentry
from usergate.services import AuthServices, create_services
from usergate.users import admin_router, users_router

logger = logging.getLogger(__name__)


# =============================================================================
# Background Maintenance
# =============================================================================


async def sweep_periodically(services: AuthServices, interval: float) -> None:
    """Purge expired cache entries until cancelled; a failed pass is logged and retried."""
    while True:
        await asyncio.sleep(interval)
        try:
            await services.sweep()
        except Exception:
            logger.exception("Cache sweep failed")


# =============================================================================
# App Setup
# =============================================================================


def create_app(services: AuthServices | None = None) -> FastAPI:
    """
    Build the application.

    Pass `services` to run against custom stores (tests do); otherwise the
    in-memory implementations are wired from the environment settings.
    """
    services = services or create_services()
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if init_sentry(settings):
            logger.info("Sentry error tracking enabled")

        sweeper = asyncio.create_task(sweep_periodically(services, settings.sweep_interval_seconds))
        logger.info(f"User service starting in {settings.environment} mode")

        yield

        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        logger.info("User service shutting down")

    app = FastAPI(
        title="User Management API",
        description="Authentication, authorization and user directory",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "timestamp": utc_now().isoformat(),
        }

    return app


app = create_app()
