"""FastAPI application factory for the Highlight Sync API."""

from __future__ import annotations

from fastapi import FastAPI

from highlight_sync.config import Config
from highlight_sync.storage import StorageManager
from highlight_sync.worker import ClientFactory, SyncTrigger, SyncWorker


def create_app(config: Config, *, client_factory: ClientFactory | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="Highlight Sync")

    # Store config on app state
    app.state.config = config

    storage = StorageManager(config)
    worker = SyncWorker(storage, config, client_factory=client_factory)
    trigger = SyncTrigger(worker)
    app.state.storage = storage
    app.state.worker = worker
    app.state.trigger = trigger

    # Include routes
    from highlight_sync.web.routes import create_router

    app.include_router(create_router(config, storage=storage, worker=worker, trigger=trigger))

    return app
