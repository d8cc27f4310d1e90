"""Data models for Highlight Sync."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SyncOperation(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Highlight(BaseModel):
    """A user-saved snippet of text.

    ``html_content`` is the rich form of ``text`` and, when present, is what
    gets converted for Notion; ``text`` is the fallback.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    text: str
    html_content: str | None = None
    source: str | None = None
    author: str | None = None
    archived: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class NotionSettings(BaseModel):
    """Per-user Notion integration settings."""

    user_id: str
    notion_api_key: str
    notion_page_id: str
    enabled: bool = True


class SyncQueueEntry(BaseModel):
    """One pending (or processed) remote edit."""

    id: str = Field(default_factory=new_id)
    user_id: str
    # NULL for delete: the highlight row is already gone
    highlight_id: str | None = None
    operation_type: SyncOperation
    text: str | None = None
    html_content: str | None = None
    # Pre-edit payload, update only; used to relocate the remote run
    original_text: str | None = None
    original_html_content: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    max_retries: int = 5
    error_message: str | None = None
    last_retry_at: datetime | None = None
    next_retry_at: datetime | None = None
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    processed_at: datetime | None = None
