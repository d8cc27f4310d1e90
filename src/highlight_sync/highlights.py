"""Local highlight edits that queue their Notion counterpart."""

from __future__ import annotations

import logging
import sqlite3

from highlight_sync.codec import encode, sanitize_html, to_plain_text
from highlight_sync.config import Config
from highlight_sync.models import Highlight, SyncOperation, SyncQueueEntry
from highlight_sync.queue import SyncQueue
from highlight_sync.storage import StorageManager
from highlight_sync.worker import SyncTrigger

logger = logging.getLogger(__name__)


class HighlightService:
    """Create, edit and delete highlights.

    The local change is always committed first. Queueing the remote edit is
    best effort: a failure is logged and the local change stands.
    """

    def __init__(
        self,
        storage: StorageManager,
        config: Config,
        *,
        trigger: SyncTrigger | None = None,
    ) -> None:
        self.storage = storage
        self.config = config
        self.queue = SyncQueue(storage, config)
        self.trigger = trigger

    def sync_enabled(self, user_id: str) -> bool:
        settings = self.storage.get_notion_settings(user_id)
        return settings is not None and settings.enabled

    def create(
        self,
        user_id: str,
        text: str | None = None,
        html_content: str | None = None,
        *,
        source: str | None = None,
        author: str | None = None,
    ) -> Highlight:
        html_content = sanitize_html(html_content) or None
        if not text and html_content:
            text = to_plain_text(encode(html_content)).strip()
        if not text:
            raise ValueError("A highlight needs text or HTML content")

        highlight = self.storage.add_highlight(
            Highlight(
                user_id=user_id,
                text=text,
                html_content=html_content,
                source=source,
                author=author,
            )
        )
        self._enqueue(
            user_id,
            SyncOperation.ADD,
            highlight_id=highlight.id,
            text=highlight.text,
            html_content=highlight.html_content,
        )
        return highlight

    def update(
        self,
        highlight_id: str,
        user_id: str,
        *,
        text: str | None = None,
        html_content: str | None = None,
        source: str | None = None,
        author: str | None = None,
        archived: bool | None = None,
    ) -> Highlight | None:
        existing = self.storage.get_highlight(highlight_id, user_id)
        if existing is None:
            return None

        if html_content is not None:
            html_content = sanitize_html(html_content)
            if text is None:
                text = to_plain_text(encode(html_content)).strip()
        updated = self.storage.update_highlight(
            highlight_id,
            text=text,
            html_content=html_content,
            source=source,
            author=author,
            archived=archived,
        )
        if updated is None:
            return None

        if (updated.text, updated.html_content) != (existing.text, existing.html_content):
            self._enqueue(
                user_id,
                SyncOperation.UPDATE,
                highlight_id=highlight_id,
                text=updated.text,
                html_content=updated.html_content,
                original_text=existing.text,
                original_html_content=existing.html_content,
            )
        return updated

    def delete(self, highlight_id: str, user_id: str) -> bool:
        existing = self.storage.get_highlight(highlight_id, user_id)
        if existing is None:
            return False
        self.storage.delete_highlight(highlight_id)
        self._enqueue(
            user_id,
            SyncOperation.DELETE,
            text=existing.text,
            html_content=existing.html_content,
        )
        return True

    def _enqueue(self, user_id: str, operation: SyncOperation, **payload: str | None) -> SyncQueueEntry | None:
        if not self.sync_enabled(user_id):
            return None
        try:
            entry = self.queue.enqueue(user_id, operation, **payload)
        except sqlite3.Error:
            logger.exception("Could not queue Notion %s for user %s", operation.value, user_id)
            return None
        if self.trigger is not None:
            self.trigger.schedule(user_id)
        return entry
