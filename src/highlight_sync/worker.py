"""Processing queued edits against the user's Notion page."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from highlight_sync.config import Config
from highlight_sync.locator import HighlightNotFoundError
from highlight_sync.models import NotionSettings, SyncOperation, SyncQueueEntry
from highlight_sync.notion import NotionAPIError, NotionClient
from highlight_sync.queue import SyncQueue
from highlight_sync.reconcile import OperationResult, apply_add, apply_delete, apply_update
from highlight_sync.storage import StorageManager

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Notion integration not configured"

ClientFactory = Callable[[NotionSettings], NotionClient]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _report(processed: int, failed: int, skipped: int, total: int, message: str) -> dict[str, Any]:
    return {
        "processed": processed,
        "failed": failed,
        "skipped": skipped,
        "total": total,
        "message": message,
    }


class SyncWorker:
    """Claims eligible queue entries and applies them one at a time."""

    def __init__(
        self,
        storage: StorageManager,
        config: Config,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.storage = storage
        self.config = config
        self.queue = SyncQueue(storage, config)
        self.client_factory = client_factory or (
            lambda settings: NotionClient.from_settings(config, settings)
        )

    async def process(self, user_id: str) -> dict[str, Any]:
        """Run up to ``batch_size`` eligible operations for a user."""
        settings = self.storage.get_notion_settings(user_id)
        if settings is None or not settings.enabled:
            return _report(0, 0, 0, 0, NOT_CONFIGURED)

        now = _utc_now()
        self.queue.release_stale(now)
        entries = self.queue.select_eligible(user_id, now, self.config.batch_size)
        if not entries:
            return _report(0, 0, 0, 0, "No pending operations")

        client = self.client_factory(settings)
        processed = failed = skipped = 0
        for entry in entries:
            if not self.queue.claim(entry.id):
                logger.info("Queue entry %s was claimed by another worker", entry.id)
                skipped += 1
                continue

            try:
                result = await self._apply(client, settings.notion_page_id, entry)
            except (NotionAPIError, HighlightNotFoundError) as exc:
                self.queue.record_failure(entry, str(exc))
                failed += 1
            except Exception as exc:
                logger.exception("Unexpected error applying queue entry %s", entry.id)
                self.queue.record_failure(entry, f"{type(exc).__name__}: {exc}")
                failed += 1
            else:
                self.queue.mark_completed(entry.id)
                processed += 1
                logger.info("Synced queue entry %s (%s)", entry.id, result.summary())

        message = f"Processed {processed} of {len(entries)} operations"
        if failed:
            message += f", {failed} failed"
        if skipped:
            message += f", {skipped} skipped"
        return _report(processed, failed, skipped, len(entries), message)

    async def _apply(
        self, client: NotionClient, root_id: str, entry: SyncQueueEntry
    ) -> OperationResult:
        if entry.operation_type == SyncOperation.ADD:
            return await apply_add(client, root_id, entry.text, entry.html_content)

        if entry.operation_type == SyncOperation.UPDATE:
            text, html = entry.text, entry.html_content
            if entry.highlight_id:
                # The row may have been edited again since this entry was queued.
                current = self.storage.get_highlight(entry.highlight_id)
                if current is not None:
                    text, html = current.text, current.html_content
            original_text = entry.original_text
            original_html = entry.original_html_content
            if original_text is None and original_html is None:
                original_text, original_html = entry.text, entry.html_content
            return await apply_update(client, root_id, original_text, original_html, text, html)

        if entry.operation_type == SyncOperation.DELETE:
            return await apply_delete(client, root_id, entry.text, entry.html_content)

        raise ValueError(f"Unknown sync operation: {entry.operation_type!r}")

    async def run_loop(
        self,
        user_id: str,
        *,
        interval: float | None = None,
        iterations: int | None = None,
    ) -> None:
        """Process the queue on a fixed interval (forever unless ``iterations``)."""
        interval = self.config.worker_interval_seconds if interval is None else interval
        count = 0
        while iterations is None or count < iterations:
            try:
                result = await self.process(user_id)
                logger.info(result["message"])
            except Exception:
                logger.exception("Sync run for user %s failed", user_id)
            count += 1
            if iterations is None or count < iterations:
                await asyncio.sleep(interval)


class SyncTrigger:
    """Debounced background processing after an enqueue.

    Enqueues for the same user within ``delay`` seconds of each other result
    in a single worker run.
    """

    def __init__(self, worker: SyncWorker, delay: float | None = None) -> None:
        self.worker = worker
        self.delay = worker.config.debounce_seconds if delay is None else delay
        self._pending: dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    def schedule(self, user_id: str) -> None:
        waiting = self._pending.get(user_id)
        if waiting is not None and not waiting.done():
            waiting.cancel()
        task = asyncio.get_running_loop().create_task(self._run_later(user_id))
        self._pending[user_id] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run_later(self, user_id: str) -> None:
        await asyncio.sleep(self.delay)
        # Past the debounce window: a later schedule() starts a new run instead.
        if self._pending.get(user_id) is asyncio.current_task():
            del self._pending[user_id]
        try:
            result = await self.worker.process(user_id)
            logger.info("Background sync for %s: %s", user_id, result["message"])
        except Exception:
            logger.exception("Background sync for user %s failed", user_id)

    async def wait(self) -> None:
        """Wait for every scheduled run to finish (cancelled ones included)."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
