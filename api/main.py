"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from api.dependencies import set_sync_client
from api.middleware import RequestContextMiddleware
from api.routes import health, sync
from core.config import SyncConfig, settings
from core.logging import setup_logging
from models.base import SyncMode
from sync.runner import SyncClient
from sync.scheduler import SyncScheduler
import logging

logger = logging.getLogger(__name__)


def create_app(client: Optional[SyncClient] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        client: Pre-built sync client; when omitted one is connected from
            environment settings on startup and closed on shutdown
        start_scheduler: Run recurring syncs every SYNC_INTERVAL_MINUTES
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting PostgreSQL -> MotherDuck sync API")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        owned = client is None
        sync_client = client
        if owned:
            sync_client = await SyncClient.connect(SyncConfig.from_settings(settings))
        set_sync_client(sync_client)

        scheduler = None
        if start_scheduler:
            scheduler = SyncScheduler(sync_client, mode=SyncMode(settings.SYNC_MODE))
            scheduler.start()

        try:
            yield
        finally:
            logger.info("Shutting down sync API")
            if scheduler is not None:
                scheduler.stop()
            set_sync_client(None)
            if owned:
                await sync_client.close()

    app = FastAPI(
        title="PostgreSQL to MotherDuck Sync API",
        description="Incremental and full table sync from PostgreSQL into DuckDB/MotherDuck",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(RequestContextMiddleware)

    # Include routers
    app.include_router(health.router)
    app.include_router(sync.router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "PostgreSQL to MotherDuck Sync API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
            "endpoints": {
                "status": "/status",
                "sync": "/sync",
                "last_sync": "/sync/last",
                "tables": "/tables",
                "clean": "/clean"
            }
        }

    return app


app = create_app()


def main():
    import uvicorn

    setup_logging()
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    main()
