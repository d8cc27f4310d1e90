"""Thin async client for the Notion block API and block JSON conversion."""

from __future__ import annotations

from typing import Any

import httpx

from highlight_sync.blocks import (
    BulletedItem,
    Code,
    ContentBlock,
    Heading,
    InlineRun,
    NumberedItem,
    Paragraph,
    Quote,
    UnsupportedBlock,
)
from highlight_sync.config import Config
from highlight_sync.models import NotionSettings

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

_CHUNK_LIMIT = 1800
_APPEND_BATCH = 100
_ANNOTATIONS = ("bold", "italic", "underline", "strikethrough", "code")
_HEADING_TYPES = {"heading_1": 1, "heading_2": 2, "heading_3": 3}


class NotionAPIError(RuntimeError):
    """A failed call to the Notion API (HTTP error or transport failure)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


# ---------------------------------------------------------------------------
# ContentBlock <-> Notion JSON
# ---------------------------------------------------------------------------


def _run_to_rich_text(run: InlineRun) -> list[dict[str, Any]]:
    annotations = {name: getattr(run, name) for name in _ANNOTATIONS if getattr(run, name)}
    items: list[dict[str, Any]] = []
    for start in range(0, len(run.text), _CHUNK_LIMIT):
        text: dict[str, Any] = {"content": run.text[start : start + _CHUNK_LIMIT]}
        if run.link:
            text["link"] = {"url": run.link}
        item: dict[str, Any] = {"type": "text", "text": text}
        if annotations:
            item["annotations"] = dict(annotations)
        items.append(item)
    return items


def runs_to_rich_text(runs: list[InlineRun]) -> list[dict[str, Any]]:
    """Convert runs to Notion rich_text, splitting items over the API limit."""
    items: list[dict[str, Any]] = []
    for run in runs:
        items.extend(_run_to_rich_text(run))
    return items


def rich_text_to_runs(items: list[dict[str, Any]]) -> list[InlineRun]:
    """Convert Notion rich_text back to runs, merging chunked neighbours."""
    runs: list[InlineRun] = []
    for item in items:
        text = item.get("plain_text", "")
        if not text:
            text = item.get("text", {}).get("content", "")
        if not text and item.get("type") == "equation":
            text = item.get("equation", {}).get("expression", "")
        if not text:
            continue
        annotations = item.get("annotations") or {}
        link = item.get("href") or ((item.get("text") or {}).get("link") or {}).get("url")
        run = InlineRun(
            text=text,
            link=link or None,
            **{name: bool(annotations.get(name)) for name in _ANNOTATIONS},
        )
        if runs and runs[-1].same_format(run):
            runs[-1].text += run.text
        else:
            runs.append(run)
    return runs


def _notion_type(block: ContentBlock) -> str:
    if isinstance(block, Heading):
        return f"heading_{block.level}"
    if isinstance(block, (Paragraph, UnsupportedBlock)):
        return "paragraph"
    return block.kind


def _block_payload(block: ContentBlock) -> dict[str, Any]:
    payload: dict[str, Any] = {"rich_text": runs_to_rich_text(block.runs)}
    if isinstance(block, Code):
        payload["language"] = block.language
    return payload


def block_to_notion(block: ContentBlock) -> dict[str, Any]:
    """Notion JSON for a block, without its children.

    Nested list items are appended separately under their created parent.
    """
    block_type = _notion_type(block)
    return {"object": "block", "type": block_type, block_type: _block_payload(block)}


def block_from_notion(data: dict[str, Any]) -> ContentBlock:
    """Parse a Notion block object into a content block."""
    block_type = data.get("type", "")
    payload = data.get(block_type) or {}
    common: dict[str, Any] = {
        "id": data.get("id"),
        "has_children": bool(data.get("has_children")),
        "runs": rich_text_to_runs(payload.get("rich_text", [])),
    }

    if block_type == "paragraph":
        return Paragraph(**common)
    if block_type in _HEADING_TYPES:
        return Heading(level=_HEADING_TYPES[block_type], **common)
    if block_type == "quote":
        return Quote(**common)
    if block_type == "code":
        return Code(language=payload.get("language") or "plain text", **common)
    if block_type == "bulleted_list_item":
        return BulletedItem(**common)
    if block_type == "numbered_list_item":
        return NumberedItem(**common)
    if block_type == "child_page":
        common["runs"] = [InlineRun(text=payload["title"])] if payload.get("title") else []
    return UnsupportedBlock(remote_type=block_type or "unsupported", **common)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class NotionClient:
    """Thin async Notion API client for the block endpoints."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = NOTION_API_BASE,
        notion_version: str = NOTION_VERSION,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.notion_version = notion_version
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Config, settings: NotionSettings) -> NotionClient:
        return cls(
            settings.notion_api_key,
            api_base=config.notion_api_base,
            notion_version=config.notion_version,
            timeout=config.notion_timeout_seconds,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.notion_version,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.api_base}{path}"
        req = f"{method} {path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self._headers,
                    json=json_payload,
                    params=params,
                )
        except httpx.TransportError as exc:
            raise NotionAPIError(f"Notion API request failed on {req}: {exc}") from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text.strip()
            if len(detail) > 1000:
                detail = detail[:1000] + "...(truncated)"
            status_code = exc.response.status_code
            request_id = exc.response.headers.get("x-request-id")
            if request_id:
                message = (
                    f"Notion API error {status_code} on {req} "
                    f"(request_id={request_id}): {detail}"
                )
            else:
                message = f"Notion API error {status_code} on {req}: {detail}"
            raise NotionAPIError(message, status_code=status_code, request_id=request_id) from exc

        if response.content:
            return response.json()
        return {}

    async def list_children(self, block_id: str) -> list[ContentBlock]:
        """Paginate through all direct children of a block or page."""
        blocks: list[ContentBlock] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": 100}
            if cursor:
                params["start_cursor"] = cursor
            data = await self._request("GET", f"/blocks/{block_id}/children", params=params)
            blocks.extend(
                block_from_notion(item)
                for item in data.get("results", [])
                if not item.get("archived") and not item.get("in_trash")
            )
            if not data.get("has_more"):
                break
            cursor = data.get("next_cursor")
        return blocks

    async def append_children(
        self,
        block_id: str,
        blocks: list[ContentBlock],
        *,
        after: str | None = None,
    ) -> list[ContentBlock]:
        """Append blocks under ``block_id`` (after ``after`` when given).

        Returns the created blocks, in order, with their new ids.
        """
        created: list[ContentBlock] = []
        for start in range(0, len(blocks), _APPEND_BATCH):
            batch = blocks[start : start + _APPEND_BATCH]
            payload: dict[str, Any] = {"children": [block_to_notion(b) for b in batch]}
            if after:
                payload["after"] = after
            data = await self._request(
                "PATCH",
                f"/blocks/{block_id}/children",
                json_payload=payload,
            )
            results = [block_from_notion(item) for item in data.get("results", [])[: len(batch)]]
            if len(results) != len(batch):
                raise NotionAPIError(
                    f"Notion API returned {len(results)} blocks for {len(batch)} appended "
                    f"on PATCH /blocks/{block_id}/children"
                )
            created.extend(results)
            if after:
                after = results[-1].id
        return created

    async def update_block(self, block: ContentBlock) -> None:
        """Replace the text content of an existing block."""
        if not block.id:
            raise ValueError("Cannot update a block without an id")
        block_type = _notion_type(block)
        await self._request(
            "PATCH",
            f"/blocks/{block.id}",
            json_payload={block_type: _block_payload(block)},
        )

    async def delete_block(self, block_id: str) -> None:
        """Delete (archive) a block; Notion removes its children with it."""
        await self._request("DELETE", f"/blocks/{block_id}")
