"""Expanding nested block trees into document-order sequences."""

from __future__ import annotations

import logging

from highlight_sync.blocks import ContentBlock, children_of, is_list_item
from highlight_sync.notion import NotionAPIError, NotionClient

logger = logging.getLogger(__name__)

# (kind, heading level, nesting depth)
BlockShape = tuple[str, int, int]


async def flatten_with_children(
    client: NotionClient, roots: list[ContentBlock]
) -> list[ContentBlock]:
    """Splice each remote block's descendants right after it.

    Children get ``parent_id`` set to the block they were fetched from. A node
    whose children cannot be fetched is treated as childless.
    """
    flat: list[ContentBlock] = []
    for block in roots:
        flat.append(block)
        if not (block.has_children and block.id):
            continue
        try:
            children = await client.list_children(block.id)
        except NotionAPIError as exc:
            logger.warning("Could not fetch children of block %s: %s", block.id, exc)
            continue
        for child in children:
            child.parent_id = block.id
        flat.extend(await flatten_with_children(client, children))
    return flat


def flatten_for_sync(tree: list[ContentBlock]) -> list[ContentBlock]:
    """Document-order copy of a locally built tree, children stripped."""
    flat: list[ContentBlock] = []
    for block in tree:
        if is_list_item(block):
            flat.append(block.model_copy(update={"children": []}))
        else:
            flat.append(block.model_copy())
        flat.extend(flatten_for_sync(children_of(block)))
    return flat


async def fetch_document(client: NotionClient, root_id: str) -> list[ContentBlock]:
    """The flattened view of everything under the root block."""
    roots = await client.list_children(root_id)
    return await flatten_with_children(client, roots)


def _shape(block: ContentBlock, depth: int) -> BlockShape:
    return (block.kind, getattr(block, "level", 0), depth)


def tree_shape(tree: list[ContentBlock], depth: int = 0) -> list[BlockShape]:
    shapes: list[BlockShape] = []
    for block in tree:
        shapes.append(_shape(block, depth))
        shapes.extend(tree_shape(children_of(block), depth + 1))
    return shapes


def flat_shape(blocks: list[ContentBlock]) -> list[BlockShape]:
    """Shapes of a flattened remote sequence, depth taken from ``parent_id``."""
    depths: dict[str, int] = {}
    shapes: list[BlockShape] = []
    for block in blocks:
        depth = depths.get(block.parent_id, -1) + 1 if block.parent_id else 0
        if block.id:
            depths[block.id] = depth
        shapes.append(_shape(block, depth))
    return shapes


def unflatten(blocks: list[ContentBlock]) -> list[ContentBlock]:
    """Rebuild list nesting of a flattened remote run from ``parent_id``."""
    roots: list[ContentBlock] = []
    by_id: dict[str, ContentBlock] = {}
    for block in blocks:
        if is_list_item(block):
            copy = block.model_copy(update={"children": []})
        else:
            copy = block.model_copy()
        parent = by_id.get(block.parent_id) if block.parent_id else None
        if parent is not None and is_list_item(parent):
            parent.children.append(copy)
        else:
            roots.append(copy)
        if block.id:
            by_id[block.id] = copy
    return roots
