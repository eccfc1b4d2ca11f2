"""ADSYNC — FastAPI Application Entry Point.

Meta Ads hierarchy and performance sync service.
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from adsync.api.sync_routes import router as sync_router
from adsync.config import settings
from adsync.core.logging import get_logger
from adsync.database import init_db, test_connection
from adsync.services import SyncServices, build_services

logger = get_logger("main")

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


def create_app(services: Optional[SyncServices] = None) -> FastAPI:
    """Build the app. Services are wired from settings at startup unless given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle."""
        logger.info("🚀 ADSYNC starting up...")
        logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
        # ConfigurationError propagates: the app must not start without credentials
        wired = services or build_services(settings)
        app.state.services = wired
        if test_connection(wired.engine):
            try:
                init_db(wired.engine)
            except Exception as e:
                logger.error(f"❌ Table creation failed: {e}")
        else:
            logger.error("❌ Database NOT connected, sync runs will fail")
        if not IS_SERVERLESS:
            wired.scheduler.start()
        yield
        await wired.close()
        logger.info("ADSYNC shut down")

    app = FastAPI(
        title="ADSYNC",
        description="Pull the Meta Ads account hierarchy and daily insights into a local store.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(sync_router)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "adsync",
            "version": "1.0.0",
        }

    return app


app = create_app()
