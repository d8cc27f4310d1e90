"""SQLite-backed store for highlights, Notion settings and the sync queue."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

from highlight_sync.config import Config
from highlight_sync.models import Highlight, NotionSettings, SyncQueueEntry

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS highlights (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  text TEXT NOT NULL,
  html_content TEXT,
  source TEXT,
  author TEXT,
  archived INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_highlights_user ON highlights(user_id, created_at);

CREATE TABLE IF NOT EXISTS user_notion_settings (
  user_id TEXT PRIMARY KEY,
  notion_api_key TEXT NOT NULL,
  notion_page_id TEXT NOT NULL,
  enabled INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS notion_sync_queue (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  highlight_id TEXT,
  operation_type TEXT NOT NULL CHECK (operation_type IN ('add', 'update', 'delete')),
  text TEXT,
  html_content TEXT,
  original_text TEXT,
  original_html_content TEXT,
  status TEXT NOT NULL DEFAULT 'pending'
    CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
  retry_count INTEGER NOT NULL DEFAULT 0,
  max_retries INTEGER NOT NULL DEFAULT 5,
  error_message TEXT,
  last_retry_at TEXT,
  next_retry_at TEXT,
  claimed_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_queue_user_status
  ON notion_sync_queue(user_id, status, created_at);
"""


def format_ts(value: datetime | None) -> str | None:
    """UTC timestamp text that sorts the same way as the datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _row_to_highlight(row: sqlite3.Row) -> Highlight:
    return Highlight(
        id=row["id"],
        user_id=row["user_id"],
        text=row["text"],
        html_content=row["html_content"],
        source=row["source"],
        author=row["author"],
        archived=bool(row["archived"]),
        created_at=parse_ts(row["created_at"]),
        updated_at=parse_ts(row["updated_at"]),
    )


_QUEUE_TIMESTAMPS = (
    "last_retry_at",
    "next_retry_at",
    "claimed_at",
    "created_at",
    "updated_at",
    "processed_at",
)


def row_to_entry(row: sqlite3.Row) -> SyncQueueEntry:
    data: dict[str, Any] = dict(row)
    for key in _QUEUE_TIMESTAMPS:
        data[key] = parse_ts(data[key])
    return SyncQueueEntry.model_validate(data)


class StorageManager:
    """Owns the SQLite connection and the highlight/settings tables.

    Queue rows live in the same database; :class:`highlight_sync.queue.SyncQueue`
    issues their SQL through :attr:`conn`.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        config.ensure_dirs()
        self.conn = sqlite3.connect(config.db_path, timeout=30.0, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # -- highlights -------------------------------------------------------

    def add_highlight(self, highlight: Highlight) -> Highlight:
        self.conn.execute(
            """
            INSERT INTO highlights
              (id, user_id, text, html_content, source, author, archived, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                highlight.id,
                highlight.user_id,
                highlight.text,
                highlight.html_content,
                highlight.source,
                highlight.author,
                int(highlight.archived),
                format_ts(highlight.created_at),
                format_ts(highlight.updated_at),
            ),
        )
        self.conn.commit()
        return highlight

    def get_highlight(self, highlight_id: str, user_id: str | None = None) -> Highlight | None:
        sql = "SELECT * FROM highlights WHERE id = ?"
        params: list[Any] = [highlight_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        row = self.conn.execute(sql, params).fetchone()
        return _row_to_highlight(row) if row else None

    def list_highlights(
        self,
        user_id: str,
        *,
        include_archived: bool = False,
        limit: int | None = None,
    ) -> list[Highlight]:
        """Highlights of a user, oldest first."""
        sql = "SELECT * FROM highlights WHERE user_id = ?"
        params: list[Any] = [user_id]
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_highlight(row) for row in self.conn.execute(sql, params)]

    def update_highlight(
        self,
        highlight_id: str,
        *,
        text: str | None = None,
        html_content: str | None = None,
        source: str | None = None,
        author: str | None = None,
        archived: bool | None = None,
    ) -> Highlight | None:
        """Update the given fields; returns the updated row, or None if missing."""
        fields: dict[str, Any] = {}
        if text is not None:
            fields["text"] = text
        if html_content is not None:
            fields["html_content"] = html_content
        if source is not None:
            fields["source"] = source
        if author is not None:
            fields["author"] = author
        if archived is not None:
            fields["archived"] = int(archived)
        fields["updated_at"] = format_ts(datetime.now(timezone.utc))

        assignments = ", ".join(f"{name} = ?" for name in fields)
        cur = self.conn.execute(
            f"UPDATE highlights SET {assignments} WHERE id = ?",
            [*fields.values(), highlight_id],
        )
        self.conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_highlight(highlight_id)

    def delete_highlight(self, highlight_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM highlights WHERE id = ?", (highlight_id,))
        self.conn.commit()
        return cur.rowcount > 0

    # -- notion settings ---------------------------------------------------

    def get_notion_settings(self, user_id: str) -> NotionSettings | None:
        row = self.conn.execute(
            "SELECT * FROM user_notion_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return NotionSettings(
            user_id=row["user_id"],
            notion_api_key=row["notion_api_key"],
            notion_page_id=row["notion_page_id"],
            enabled=bool(row["enabled"]),
        )

    def save_notion_settings(self, settings: NotionSettings) -> None:
        self.conn.execute(
            """
            INSERT INTO user_notion_settings (user_id, notion_api_key, notion_page_id, enabled)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
              notion_api_key = excluded.notion_api_key,
              notion_page_id = excluded.notion_page_id,
              enabled = excluded.enabled
            """,
            (
                settings.user_id,
                settings.notion_api_key,
                settings.notion_page_id,
                int(settings.enabled),
            ),
        )
        self.conn.commit()
