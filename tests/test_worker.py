"""Tests for the queue worker and the debounced trigger."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from highlight_sync.highlights import HighlightService
from highlight_sync.models import SyncOperation, SyncStatus
from highlight_sync.worker import NOT_CONFIGURED, SyncTrigger, SyncWorker


@pytest.fixture
def worker(storage, config, page):
    return SyncWorker(storage, config, client_factory=lambda settings: page)


@pytest.fixture
def service(storage, config):
    return HighlightService(storage, config)


def _entries(worker, **kwargs):
    return worker.queue.list_entries("user-1", **kwargs)


class TestProcess:
    @pytest.mark.asyncio
    async def test_not_configured(self, worker, page):
        result = await worker.process("user-1")
        assert result["message"] == NOT_CONFIGURED
        assert result["processed"] == 0
        assert page.calls == []

    @pytest.mark.asyncio
    async def test_disabled_settings_count_as_not_configured(self, worker, storage, configured):
        storage.save_notion_settings(configured.model_copy(update={"enabled": False}))
        assert (await worker.process("user-1"))["message"] == NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_empty_queue(self, worker, configured):
        result = await worker.process("user-1")
        assert result == {
            "processed": 0,
            "failed": 0,
            "skipped": 0,
            "total": 0,
            "message": "No pending operations",
        }

    @pytest.mark.asyncio
    async def test_add_writes_highlight_and_sentinel(self, worker, service, page, configured):
        service.create("user-1", html_content="<p>Hello <b>world</b></p>")

        result = await worker.process("user-1")

        assert result["processed"] == 1
        assert result["message"] == "Processed 1 of 1 operations"
        assert page.flat() == [(0, "paragraph", "Hello world"), (0, "paragraph", "")]
        (entry,) = _entries(worker)
        assert entry.status == SyncStatus.COMPLETED
        assert entry.processed_at is not None

    @pytest.mark.asyncio
    async def test_adds_keep_queue_order(self, worker, service, page, configured):
        for text in ("first", "second", "third"):
            service.create("user-1", text)
        await worker.process("user-1")
        assert page.top_level_texts() == ["first", "", "second", "", "third", ""]

    @pytest.mark.asyncio
    async def test_update_patches_remote_text(self, worker, service, page, configured):
        highlight = service.create("user-1", "Buy milk")
        await worker.process("user-1")

        service.update(highlight.id, "user-1", text="Buy milk and eggs")
        result = await worker.process("user-1")

        assert result["processed"] == 1
        assert page.top_level_texts() == ["Buy milk and eggs", ""]
        assert page.count("update_block") == 1

    @pytest.mark.asyncio
    async def test_update_uses_current_row(self, worker, service, storage, page, configured):
        highlight = service.create("user-1", "Buy milk")
        await worker.process("user-1")

        service.update(highlight.id, "user-1", text="v2")
        storage.update_highlight(highlight.id, text="v3")
        await worker.process("user-1")

        assert page.top_level_texts() == ["v3", ""]

    @pytest.mark.asyncio
    async def test_edit_during_failed_update_completes(
        self, worker, service, config, page, configured
    ):
        config.backoff_base_seconds = 0
        highlight = service.create("user-1", "A")
        await worker.process("user-1")

        service.update(highlight.id, "user-1", text="B")
        (first,) = _entries(worker, statuses=[SyncStatus.PENDING])
        assert worker.queue.claim(first.id)
        service.update(highlight.id, "user-1", text="C")
        worker.queue.record_failure(worker.queue.get(first.id), "connection reset")

        result = await worker.process("user-1")

        assert result["failed"] == 0
        assert page.top_level_texts() == ["C", ""]
        assert {e.status for e in _entries(worker)} == {SyncStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test_edit_before_first_sync(self, worker, service, page, configured):
        highlight = service.create("user-1", "Buy milk")
        service.update(highlight.id, "user-1", text="Buy milk and eggs")

        result = await worker.process("user-1")

        assert result["processed"] == 2
        assert page.top_level_texts() == ["Buy milk and eggs", ""]

    @pytest.mark.asyncio
    async def test_add_then_delete_leaves_empty_page(self, worker, service, page, configured):
        highlight = service.create("user-1", html_content="<ul><li>one<ul><li>two</li></ul></li></ul>")
        await worker.process("user-1")

        service.delete(highlight.id, "user-1")
        await worker.process("user-1")

        assert page.flat() == []

    @pytest.mark.asyncio
    async def test_delete_only_touches_its_own_run(self, worker, service, page, configured):
        keep = service.create("user-1", "keep me")
        gone = service.create("user-1", "remove me")
        await worker.process("user-1")

        service.delete(gone.id, "user-1")
        await worker.process("user-1")

        assert page.top_level_texts() == ["keep me", ""]
        assert service.storage.get_highlight(keep.id) is not None

    @pytest.mark.asyncio
    async def test_missing_run_fails_terminally_after_retries(self, worker, config, page, configured):
        config.backoff_base_seconds = 0
        worker.queue.enqueue("user-1", SyncOperation.DELETE, text="ghost")

        for _ in range(config.max_retries):
            result = await worker.process("user-1")
            assert result["failed"] == 1

        (entry,) = _entries(worker)
        assert entry.status == SyncStatus.FAILED
        assert entry.retry_count == 5
        assert "No block run matches" in entry.error_message
        assert (await worker.process("user-1"))["message"] == "No pending operations"
        assert page.count("delete_block") == 0

    @pytest.mark.asyncio
    async def test_api_error_waits_for_backoff(self, worker, service, page, configured):
        service.create("user-1", "Buy milk")
        page.fail_methods.add("append_children")

        result = await worker.process("user-1")

        assert result["failed"] == 1
        assert result["message"] == "Processed 0 of 1 operations, 1 failed"
        (entry,) = _entries(worker)
        assert entry.status == SyncStatus.PENDING
        assert entry.retry_count == 1
        assert "502" in entry.error_message
        assert entry.next_retry_at > entry.last_retry_at
        assert (await worker.process("user-1"))["message"] == "No pending operations"

    @pytest.mark.asyncio
    async def test_api_error_is_retried(self, worker, service, config, page, configured):
        config.backoff_base_seconds = 0
        service.create("user-1", "Buy milk")
        page.fail_methods.add("append_children")
        assert (await worker.process("user-1"))["failed"] == 1

        page.fail_methods.clear()
        result = await worker.process("user-1")

        assert result["processed"] == 1
        assert page.top_level_texts() == ["Buy milk", ""]
        (entry,) = _entries(worker)
        assert entry.status == SyncStatus.COMPLETED
        assert entry.error_message is None

    @pytest.mark.asyncio
    async def test_lost_claim_is_skipped(self, worker, service, page, configured, monkeypatch):
        service.create("user-1", "x")
        monkeypatch.setattr(worker.queue, "claim", lambda entry_id, now=None: False)

        result = await worker.process("user-1")

        assert result["skipped"] == 1
        assert result["message"] == "Processed 0 of 1 operations, 1 skipped"
        assert page.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(self, worker, service, configured, monkeypatch, caplog):
        service.create("user-1", "x")
        monkeypatch.setattr(worker, "_apply", AsyncMock(side_effect=RuntimeError("boom")))

        with caplog.at_level(logging.ERROR, logger="highlight_sync.worker"):
            result = await worker.process("user-1")

        assert result["failed"] == 1
        (entry,) = _entries(worker)
        assert entry.error_message == "RuntimeError: boom"
        assert "Unexpected error" in caplog.text

    @pytest.mark.asyncio
    async def test_client_built_from_user_settings(self, storage, config, service, page, configured):
        seen = []

        def factory(settings):
            seen.append(settings)
            return page

        service.create("user-1", "x")
        await SyncWorker(storage, config, client_factory=factory).process("user-1")

        assert [s.notion_page_id for s in seen] == [configured.notion_page_id]


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_runs_requested_iterations(self, worker, monkeypatch):
        process = AsyncMock(return_value={"message": "ok"})
        monkeypatch.setattr(worker, "process", process)

        await worker.run_loop("user-1", interval=0, iterations=3)

        assert process.await_count == 3

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self, worker, monkeypatch, caplog):
        process = AsyncMock(side_effect=[RuntimeError("db locked"), {"message": "ok"}])
        monkeypatch.setattr(worker, "process", process)

        with caplog.at_level(logging.ERROR, logger="highlight_sync.worker"):
            await worker.run_loop("user-1", interval=0, iterations=2)

        assert process.await_count == 2
        assert "Sync run for user user-1 failed" in caplog.text


class TestSyncTrigger:
    @pytest.mark.asyncio
    async def test_bursts_are_debounced(self, worker, monkeypatch):
        process = AsyncMock(return_value={"message": "ok"})
        monkeypatch.setattr(worker, "process", process)
        trigger = SyncTrigger(worker, delay=0.05)

        for _ in range(3):
            trigger.schedule("user-1")
        await trigger.wait()

        process.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_users_are_debounced_separately(self, worker, monkeypatch):
        process = AsyncMock(return_value={"message": "ok"})
        monkeypatch.setattr(worker, "process", process)
        trigger = SyncTrigger(worker, delay=0.01)

        trigger.schedule("user-1")
        trigger.schedule("user-2")
        await trigger.wait()

        assert sorted(call.args[0] for call in process.await_args_list) == ["user-1", "user-2"]

    @pytest.mark.asyncio
    async def test_schedule_after_window_starts_new_run(self, worker, monkeypatch):
        process = AsyncMock(return_value={"message": "ok"})
        monkeypatch.setattr(worker, "process", process)
        trigger = SyncTrigger(worker, delay=0.01)

        trigger.schedule("user-1")
        await trigger.wait()
        trigger.schedule("user-1")
        await trigger.wait()

        assert process.await_count == 2

    @pytest.mark.asyncio
    async def test_default_delay_from_config(self, worker, config):
        assert SyncTrigger(worker).delay == config.debounce_seconds

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, worker, monkeypatch, caplog):
        monkeypatch.setattr(worker, "process", AsyncMock(side_effect=RuntimeError("boom")))
        trigger = SyncTrigger(worker, delay=0)

        with caplog.at_level(logging.ERROR, logger="highlight_sync.worker"):
            trigger.schedule("user-1")
            await trigger.wait()

        assert "Background sync for user user-1 failed" in caplog.text

    @pytest.mark.asyncio
    async def test_end_to_end_with_service(self, storage, config, page, configured):
        worker = SyncWorker(storage, config, client_factory=lambda settings: page)
        trigger = SyncTrigger(worker, delay=0.01)
        service = HighlightService(storage, config, trigger=trigger)

        service.create("user-1", "one")
        service.create("user-1", "two")
        await trigger.wait()

        assert page.top_level_texts() == ["one", "", "two", ""]
