"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from quotesync.api.routes import sync as sync_routes
from quotesync.sync.manager import SyncManager


def create_app(manager: Optional[SyncManager] = None) -> FastAPI:
    """Build the app around a SyncManager (a fresh one from settings by default)."""

    manager = manager or SyncManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager.initialize()
        if manager.settings.auto_sync:
            manager.start_scheduled_sync()
        yield
        manager.cleanup()

    app = FastAPI(
        title="Quote Sync API",
        description="Local ↔ master database replication for the quoting tool",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.sync_manager = manager

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
