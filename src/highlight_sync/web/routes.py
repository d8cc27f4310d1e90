"""JSON API routes for highlights and the Notion sync queue."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter
from pydantic import BaseModel

from highlight_sync.codec import sanitize_html
from highlight_sync.config import Config
from highlight_sync.highlights import HighlightService
from highlight_sync.importer import import_highlights
from highlight_sync.models import Highlight, NotionSettings, SyncOperation
from highlight_sync.notion import NotionAPIError
from highlight_sync.storage import StorageManager
from highlight_sync.worker import NOT_CONFIGURED, SyncTrigger, SyncWorker

logger = logging.getLogger(__name__)


class QueueRequest(BaseModel):
    operation_type: SyncOperation
    highlight_id: str | None = None
    text: str | None = None
    html_content: str | None = None
    original_text: str | None = None
    original_html_content: str | None = None


class HighlightRequest(BaseModel):
    text: str | None = None
    html_content: str | None = None
    source: str | None = None
    author: str | None = None


class HighlightUpdateRequest(HighlightRequest):
    archived: bool | None = None


class SettingsRequest(BaseModel):
    notion_api_key: str
    notion_page_id: str
    enabled: bool = True


def _highlight_json(highlight: Highlight) -> dict:
    return {
        "id": highlight.id,
        "text": highlight.text,
        "html_content": highlight.html_content,
        "source": highlight.source,
        "author": highlight.author,
        "archived": highlight.archived,
        "created_at": highlight.created_at.isoformat(),
        "updated_at": highlight.updated_at.isoformat(),
    }


def create_router(
    config: Config,
    *,
    storage: StorageManager,
    worker: SyncWorker,
    trigger: SyncTrigger,
) -> APIRouter:
    """Create the router with all API endpoints.

    Every endpoint acts for ``user_id`` (query parameter), defaulting to the
    configured local user.
    """
    router = APIRouter()
    service = HighlightService(storage, config, trigger=trigger)
    queue = worker.queue

    @router.get("/api/health")
    async def api_health():
        return {"status": "ok"}

    # -- Notion sync -------------------------------------------------------

    @router.post("/api/notion/queue")
    async def api_notion_queue(req: QueueRequest, user_id: str | None = None):
        """Queue a Notion operation and schedule a debounced worker run."""
        user = user_id or config.user_id
        if not service.sync_enabled(user):
            return {"enqueued": False, "message": NOT_CONFIGURED}
        if req.operation_type != SyncOperation.DELETE and not req.highlight_id:
            return {"error": "highlight_id is required for add and update"}
        if not (req.text or req.html_content):
            return {"error": "text or html_content is required"}
        if req.operation_type == SyncOperation.UPDATE and not (
            req.original_text or req.original_html_content
        ):
            return {"error": "original_text or original_html_content is required for update"}

        try:
            entry = queue.enqueue(
                user,
                req.operation_type,
                highlight_id=req.highlight_id,
                text=req.text,
                html_content=sanitize_html(req.html_content),
                original_text=req.original_text,
                original_html_content=sanitize_html(req.original_html_content),
            )
        except sqlite3.Error as e:
            logger.exception("Could not queue Notion operation")
            return {"enqueued": False, "error": str(e)}

        trigger.schedule(user)
        return {"enqueued": True, "id": entry.id, "message": "Operation queued"}

    @router.post("/api/notion/sync")
    async def api_notion_sync(user_id: str | None = None):
        """Process up to one batch of queued operations."""
        return await worker.process(user_id or config.user_id)

    @router.get("/api/notion/sync")
    async def api_notion_status(user_id: str | None = None):
        """Queue counts per status."""
        return queue.status_counts(user_id or config.user_id)

    @router.post("/api/notion/import")
    async def api_notion_import(user_id: str | None = None):
        """Import highlights from the Notion page that are missing locally."""
        user = user_id or config.user_id
        settings = storage.get_notion_settings(user)
        if settings is None or not settings.enabled:
            return {"imported": 0, "skipped": 0, "message": NOT_CONFIGURED}
        try:
            result = await import_highlights(
                worker.client_factory(settings), storage, user, settings.notion_page_id
            )
        except NotionAPIError as e:
            return {"error": str(e)}
        return {**result, "message": f"Imported {result['imported']} highlights"}

    @router.post("/api/notion/settings")
    async def api_notion_settings(req: SettingsRequest, user_id: str | None = None):
        """Configure the Notion integration for a user."""
        user = user_id or config.user_id
        storage.save_notion_settings(
            NotionSettings(
                user_id=user,
                notion_api_key=req.notion_api_key,
                notion_page_id=req.notion_page_id,
                enabled=req.enabled,
            )
        )
        return {"status": "ok", "enabled": req.enabled}

    # -- Highlights --------------------------------------------------------

    @router.get("/api/highlights")
    async def api_list_highlights(user_id: str | None = None, include_archived: bool = False):
        """JSON API: list a user's highlights, oldest first."""
        highlights = storage.list_highlights(
            user_id or config.user_id, include_archived=include_archived
        )
        return [_highlight_json(h) for h in highlights]

    @router.post("/api/highlights")
    async def api_create_highlight(req: HighlightRequest, user_id: str | None = None):
        """Create a highlight and queue it for Notion."""
        try:
            highlight = service.create(
                user_id or config.user_id,
                req.text,
                req.html_content,
                source=req.source,
                author=req.author,
            )
        except ValueError as e:
            return {"error": str(e)}
        return {"status": "ok", "highlight": _highlight_json(highlight)}

    @router.put("/api/highlights/{highlight_id}")
    async def api_update_highlight(
        highlight_id: str, req: HighlightUpdateRequest, user_id: str | None = None
    ):
        """Edit a highlight and queue the change for Notion."""
        highlight = service.update(
            highlight_id,
            user_id or config.user_id,
            text=req.text,
            html_content=req.html_content,
            source=req.source,
            author=req.author,
            archived=req.archived,
        )
        if highlight is None:
            return {"error": f"Highlight {highlight_id} not found"}
        return {"status": "ok", "highlight": _highlight_json(highlight)}

    @router.delete("/api/highlights/{highlight_id}")
    async def api_delete_highlight(highlight_id: str, user_id: str | None = None):
        """Delete a highlight and queue its removal from Notion."""
        if service.delete(highlight_id, user_id or config.user_id):
            return {"status": "ok"}
        return {"error": f"Highlight {highlight_id} not found"}

    return router
