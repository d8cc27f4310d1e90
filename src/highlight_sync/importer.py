"""Importing highlights that already exist on the Notion page."""

from __future__ import annotations

import logging

from highlight_sync.codec import decode, to_plain_text
from highlight_sync.flatten import fetch_document, unflatten
from highlight_sync.locator import Fingerprint, fingerprint_from_content, iter_runs
from highlight_sync.models import Highlight
from highlight_sync.notion import NotionClient
from highlight_sync.storage import StorageManager

logger = logging.getLogger(__name__)

IMPORT_SOURCE = "Notion"


async def import_highlights(
    client: NotionClient,
    storage: StorageManager,
    user_id: str,
    root_id: str,
) -> dict[str, int]:
    """Create a local highlight for every remote run not already known.

    Runs are compared to existing highlights (archived ones too) by their
    normalized text. Imported highlights are not queued for sync.
    """
    document = await fetch_document(client, root_id)
    known = {
        fingerprint.tolerant
        for h in storage.list_highlights(user_id, include_archived=True)
        for fingerprint in fingerprint_from_content(h.text, h.html_content)
    }

    imported = skipped = 0
    for run in iter_runs(document):
        key = Fingerprint.from_blocks(run.blocks).tolerant
        if not key or key in known:
            skipped += 1
            continue
        tree = unflatten(run.blocks)
        storage.add_highlight(
            Highlight(
                user_id=user_id,
                text=to_plain_text(tree),
                html_content=decode(tree),
                source=IMPORT_SOURCE,
            )
        )
        known.add(key)
        imported += 1

    logger.info("Imported %d highlights from Notion (%d skipped)", imported, skipped)
    return {"imported": imported, "skipped": skipped}
