"""Durable queue of remote edits, persisted in the ``notion_sync_queue`` table.

Entries move ``pending -> processing -> completed``, or back to ``pending``
with a backoff delay after a failure, or to terminal ``failed`` once the
retry cap is reached. Workers coordinate only through the conditional claim.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from highlight_sync.config import Config
from highlight_sync.models import SyncOperation, SyncQueueEntry, SyncStatus, new_id
from highlight_sync.storage import StorageManager, format_ts, row_to_entry

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def backoff(
    retry_count: int,
    *,
    base: float = 30.0,
    factor: float = 3.0,
    cap: float = 6 * 60 * 60,
) -> timedelta:
    """Delay before retry number ``retry_count`` (1-based)."""
    exponent = min(max(retry_count - 1, 0), 32)
    return timedelta(seconds=min(base * factor**exponent, cap))


class SyncQueue:
    def __init__(self, storage: StorageManager, config: Config) -> None:
        self.storage = storage
        self.config = config

    @property
    def _conn(self) -> sqlite3.Connection:
        return self.storage.conn

    def _backoff(self, retry_count: int) -> timedelta:
        return backoff(
            retry_count,
            base=self.config.backoff_base_seconds,
            factor=self.config.backoff_factor,
            cap=self.config.backoff_cap_seconds,
        )

    def get(self, entry_id: str) -> SyncQueueEntry | None:
        row = self._conn.execute(
            "SELECT * FROM notion_sync_queue WHERE id = ?", (entry_id,)
        ).fetchone()
        return row_to_entry(row) if row else None

    def list_entries(
        self,
        user_id: str,
        *,
        statuses: list[SyncStatus] | None = None,
        limit: int = 50,
    ) -> list[SyncQueueEntry]:
        sql = "SELECT * FROM notion_sync_queue WHERE user_id = ?"
        params: list[object] = [user_id]
        if statuses:
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(status.value for status in statuses)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        return [row_to_entry(row) for row in self._conn.execute(sql, params)]

    def enqueue(
        self,
        user_id: str,
        operation: SyncOperation,
        *,
        highlight_id: str | None = None,
        text: str | None = None,
        html_content: str | None = None,
        original_text: str | None = None,
        original_html_content: str | None = None,
        now: datetime | None = None,
    ) -> SyncQueueEntry:
        """Queue an operation, folding it into a still-pending duplicate.

        A pending add/update for the same highlight gets the new payload while
        keeping its original payload. A duplicate already being processed is
        left alone and a new entry is inserted.
        """
        now = now or _utc_now()
        if operation == SyncOperation.DELETE:
            highlight_id = None

        if operation != SyncOperation.DELETE and highlight_id:
            row = self._conn.execute(
                """
                SELECT id FROM notion_sync_queue
                WHERE user_id = ? AND highlight_id = ? AND operation_type = ? AND status = 'pending'
                ORDER BY created_at, rowid
                LIMIT 1
                """,
                (user_id, highlight_id, operation.value),
            ).fetchone()
            if row is not None:
                cur = self._conn.execute(
                    """
                    UPDATE notion_sync_queue
                    SET text = ?, html_content = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (text, html_content, format_ts(now), row["id"]),
                )
                self._conn.commit()
                if cur.rowcount == 1:
                    logger.debug("Merged %s for highlight %s into entry %s", operation.value, highlight_id, row["id"])
                    return self.get(row["id"])

        entry = SyncQueueEntry(
            id=new_id(),
            user_id=user_id,
            highlight_id=highlight_id,
            operation_type=operation,
            text=text,
            html_content=html_content,
            original_text=original_text if operation == SyncOperation.UPDATE else None,
            original_html_content=original_html_content if operation == SyncOperation.UPDATE else None,
            max_retries=self.config.max_retries,
            created_at=now,
            updated_at=now,
        )
        self._conn.execute(
            """
            INSERT INTO notion_sync_queue
              (id, user_id, highlight_id, operation_type, text, html_content,
               original_text, original_html_content, status, retry_count, max_retries,
               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', 0, ?, ?, ?)
            """,
            (
                entry.id,
                entry.user_id,
                entry.highlight_id,
                entry.operation_type.value,
                entry.text,
                entry.html_content,
                entry.original_text,
                entry.original_html_content,
                entry.max_retries,
                format_ts(now),
                format_ts(now),
            ),
        )
        self._conn.commit()
        return entry

    def release_stale(self, now: datetime | None = None, threshold: timedelta | None = None) -> int:
        """Return entries stuck in ``processing`` to ``pending``."""
        now = now or _utc_now()
        threshold = threshold or timedelta(seconds=self.config.stale_after_seconds)
        cur = self._conn.execute(
            """
            UPDATE notion_sync_queue
            SET status = 'pending', claimed_at = NULL, updated_at = ?
            WHERE status = 'processing' AND claimed_at < ?
            """,
            (format_ts(now), format_ts(now - threshold)),
        )
        self._conn.commit()
        if cur.rowcount:
            logger.warning("Released %d stale queue entries", cur.rowcount)
        return cur.rowcount

    def select_eligible(
        self, user_id: str, now: datetime | None = None, limit: int | None = None
    ) -> list[SyncQueueEntry]:
        """Entries ready to run, oldest first."""
        now_ts = format_ts(now or _utc_now())
        rows = self._conn.execute(
            """
            SELECT * FROM notion_sync_queue
            WHERE user_id = ?
              AND retry_count < max_retries
              AND (
                (status = 'pending'
                  AND (retry_count = 0 OR next_retry_at IS NULL OR next_retry_at <= ?))
                OR (status = 'failed' AND next_retry_at IS NOT NULL AND next_retry_at <= ?)
              )
            ORDER BY created_at, rowid
            LIMIT ?
            """,
            (user_id, now_ts, now_ts, limit or self.config.batch_size),
        ).fetchall()
        return [row_to_entry(row) for row in rows]

    def claim(self, entry_id: str, now: datetime | None = None) -> bool:
        """Move an entry to ``processing``; only one concurrent caller wins."""
        now_ts = format_ts(now or _utc_now())
        cur = self._conn.execute(
            """
            UPDATE notion_sync_queue
            SET status = 'processing', claimed_at = ?, updated_at = ?
            WHERE id = ? AND status IN ('pending', 'failed') AND retry_count < max_retries
            """,
            (now_ts, now_ts, entry_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def mark_completed(self, entry_id: str, now: datetime | None = None) -> None:
        now_ts = format_ts(now or _utc_now())
        self._conn.execute(
            """
            UPDATE notion_sync_queue
            SET status = 'completed', processed_at = ?, updated_at = ?,
                claimed_at = NULL, error_message = NULL, next_retry_at = NULL
            WHERE id = ?
            """,
            (now_ts, now_ts, entry_id),
        )
        self._conn.commit()

    def record_failure(
        self, entry: SyncQueueEntry, error: str, now: datetime | None = None
    ) -> SyncQueueEntry:
        """Count a failed attempt and reschedule, or fail terminally at the cap."""
        now = now or _utc_now()
        retry_count = entry.retry_count + 1
        if retry_count < entry.max_retries:
            status = SyncStatus.PENDING
            next_retry_at = format_ts(now + self._backoff(retry_count))
        else:
            status = SyncStatus.FAILED
            next_retry_at = None

        self._conn.execute(
            """
            UPDATE notion_sync_queue
            SET status = ?, retry_count = ?, error_message = ?, last_retry_at = ?,
                next_retry_at = ?, claimed_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (status.value, retry_count, error, format_ts(now), next_retry_at, format_ts(now), entry.id),
        )
        self._conn.commit()
        if status == SyncStatus.FAILED:
            logger.error("Queue entry %s failed after %d attempts: %s", entry.id, retry_count, error)
        else:
            logger.warning(
                "Queue entry %s failed (attempt %d/%d), retrying at %s: %s",
                entry.id,
                retry_count,
                entry.max_retries,
                next_retry_at,
                error,
            )
        return self.get(entry.id)

    def retry_failed(self, user_id: str, now: datetime | None = None) -> int:
        """Requeue terminally failed entries with a fresh retry budget."""
        cur = self._conn.execute(
            """
            UPDATE notion_sync_queue
            SET status = 'pending', retry_count = 0, next_retry_at = NULL,
                error_message = NULL, updated_at = ?
            WHERE user_id = ? AND status = 'failed'
            """,
            (format_ts(now or _utc_now()), user_id),
        )
        self._conn.commit()
        return cur.rowcount

    def status_counts(self, user_id: str, now: datetime | None = None) -> dict[str, int]:
        now_ts = format_ts(now or _utc_now())
        counts = {status.value: 0 for status in SyncStatus}
        for row in self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM notion_sync_queue WHERE user_id = ? GROUP BY status",
            (user_id,),
        ):
            counts[row["status"]] = row["n"]
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS n FROM notion_sync_queue
            WHERE user_id = ? AND status = 'pending' AND retry_count > 0
              AND retry_count < max_retries AND next_retry_at <= ?
            """,
            (user_id, now_ts),
        ).fetchone()
        counts["ready_to_retry"] = row["n"]
        return counts
