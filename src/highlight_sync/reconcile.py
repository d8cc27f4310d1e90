"""Applying one add/update/delete of a highlight to the remote page.

Each operation re-reads the page, so retrying a failed operation starts from
the page's current state. The first failing remote call propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from highlight_sync.blocks import ContentBlock, children_of, sentinel
from highlight_sync.codec import encode_content
from highlight_sync.flatten import fetch_document, flat_shape, flatten_for_sync, tree_shape
from highlight_sync.locator import HighlightNotFoundError, fingerprint_from_content, locate
from highlight_sync.models import SyncOperation
from highlight_sync.notion import NotionClient

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    operation: SyncOperation
    written: int = 0
    deleted: int = 0
    patched: int = 0
    exact: bool | None = None

    def summary(self) -> str:
        parts = [f"{self.operation.value}:"]
        if self.written:
            parts.append(f"{self.written} written")
        if self.patched:
            parts.append(f"{self.patched} patched")
        if self.deleted:
            parts.append(f"{self.deleted} deleted")
        if self.exact is False:
            parts.append("(tolerant match)")
        return " ".join(parts)


async def append_tree(
    client: NotionClient,
    parent_id: str,
    blocks: list[ContentBlock],
    *,
    after: str | None = None,
) -> int:
    """Append blocks, then their list children under each created parent.

    Returns the number of blocks written at every level.
    """
    if not blocks:
        return 0
    created = await client.append_children(parent_id, blocks, after=after)
    written = len(created)
    for local, remote in zip(blocks, created):
        children = children_of(local)
        if children and remote.id:
            written += await append_tree(client, remote.id, children)
    return written


async def apply_add(
    client: NotionClient, root_id: str, text: str | None, html: str | None
) -> OperationResult:
    """Append the highlight and its trailing sentinel to the end of the page."""
    blocks = encode_content(text, html)
    written = await append_tree(client, root_id, [*blocks, sentinel()])
    return OperationResult(SyncOperation.ADD, written=written)


def _top_level_before(document: list[ContentBlock], index: int) -> ContentBlock | None:
    for block in reversed(document[:index]):
        if block.parent_id is None:
            return block
    return None


async def apply_update(
    client: NotionClient,
    root_id: str,
    original_text: str | None,
    original_html: str | None,
    text: str | None,
    html: str | None,
) -> OperationResult:
    """Replace the run holding the original payload with the current one.

    When the original run is gone but the current payload is already on the
    page (an earlier retried update wrote it), nothing is written.
    """
    document = await fetch_document(client, root_id)
    try:
        match = locate(document, fingerprint_from_content(original_text, original_html))
    except HighlightNotFoundError:
        try:
            current = locate(document, fingerprint_from_content(text, html))
        except HighlightNotFoundError:
            current = None
        if current is None:
            raise
        logger.info("Highlight already shows its current content, nothing to update")
        return OperationResult(SyncOperation.UPDATE, exact=current.exact)
    new_tree = encode_content(text, html)
    result = OperationResult(SyncOperation.UPDATE, exact=match.exact)

    if flat_shape(match.blocks) == tree_shape(new_tree):
        for old, new in zip(match.blocks, flatten_for_sync(new_tree)):
            if old.runs == new.runs and getattr(old, "language", None) == getattr(new, "language", None):
                continue
            await client.update_block(new.model_copy(update={"id": old.id}))
            result.patched += 1
        return result

    top_level = match.top_level
    anchor = _top_level_before(document, match.start)
    if anchor is not None and anchor.id:
        for block in top_level:
            await client.delete_block(block.id)
            result.deleted += 1
        result.written = await append_tree(client, root_id, new_tree, after=anchor.id)
    else:
        # Nothing precedes the run: insert behind it first, then remove it.
        result.written = await append_tree(client, root_id, new_tree, after=top_level[-1].id)
        for block in top_level:
            await client.delete_block(block.id)
            result.deleted += 1
    return result


async def apply_delete(
    client: NotionClient, root_id: str, text: str | None, html: str | None
) -> OperationResult:
    """Remove the highlight's run and exactly one adjacent sentinel."""
    document = await fetch_document(client, root_id)
    match = locate(document, fingerprint_from_content(text, html))
    result = OperationResult(SyncOperation.DELETE, exact=match.exact)

    for block in match.top_level:
        await client.delete_block(block.id)
        result.deleted += 1

    adjacent = match.sentinel_after or match.sentinel_before
    if adjacent is not None and adjacent.id:
        await client.delete_block(adjacent.id)
        result.deleted += 1
    return result
