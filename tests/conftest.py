"""Shared test configuration."""

from __future__ import annotations

import itertools

import pytest

from highlight_sync.blocks import ContentBlock, children_of, is_list_item
from highlight_sync.config import Config
from highlight_sync.models import NotionSettings
from highlight_sync.notion import NotionAPIError
from highlight_sync.storage import StorageManager

ROOT_ID = "root-page"


class FakeNotionPage:
    """In-memory Notion page implementing the client's four block calls."""

    def __init__(self, root_id: str = ROOT_ID) -> None:
        self.root_id = root_id
        self.blocks: dict[str, ContentBlock] = {}
        self.children: dict[str, list[str]] = {root_id: []}
        self.calls: list[tuple[str, str]] = []
        self.fail_methods: set[str] = set()
        self.fail_children_of: set[str] = set()
        self._ids = itertools.count(1)

    def _check(self, method: str, block_id: str) -> None:
        self.calls.append((method, block_id))
        if method in self.fail_methods:
            raise NotionAPIError(f"Notion API error 502 on {method}", status_code=502)

    def _insert(self, parent_id: str, blocks: list[ContentBlock], after: str | None) -> list[ContentBlock]:
        created: list[ContentBlock] = []
        for block in blocks:
            block_id = f"blk-{next(self._ids)}"
            update = {"id": block_id, "parent_id": None, "has_children": False}
            if is_list_item(block):
                update["children"] = []
            stored = block.model_copy(update=update, deep=True)
            self.blocks[block_id] = stored
            self.children[block_id] = []
            created.append(stored.model_copy(deep=True))
        siblings = self.children.setdefault(parent_id, [])
        position = siblings.index(after) + 1 if after else len(siblings)
        siblings[position:position] = [block.id for block in created]
        return created

    def seed(self, blocks: list[ContentBlock], parent_id: str | None = None) -> None:
        """Synchronously add blocks (and list children) to the page."""
        created = self._insert(parent_id or self.root_id, blocks, None)
        for local, remote in zip(blocks, created):
            if children_of(local):
                self.seed(children_of(local), remote.id)

    async def list_children(self, block_id: str) -> list[ContentBlock]:
        self._check("list_children", block_id)
        if block_id in self.fail_children_of:
            raise NotionAPIError(f"Notion API error 500 on GET /blocks/{block_id}/children", status_code=500)
        return [
            self.blocks[child_id].model_copy(
                update={"has_children": bool(self.children.get(child_id))}, deep=True
            )
            for child_id in self.children.get(block_id, [])
        ]

    async def append_children(
        self, block_id: str, blocks: list[ContentBlock], *, after: str | None = None
    ) -> list[ContentBlock]:
        self._check("append_children", block_id)
        return self._insert(block_id, blocks, after)

    async def update_block(self, block: ContentBlock) -> None:
        self._check("update_block", block.id)
        stored = self.blocks[block.id]
        stored.runs = [run.model_copy() for run in block.runs]

    async def delete_block(self, block_id: str) -> None:
        self._check("delete_block", block_id)
        for siblings in self.children.values():
            if block_id in siblings:
                siblings.remove(block_id)
        self._drop(block_id)

    def _drop(self, block_id: str) -> None:
        for child_id in self.children.pop(block_id, []):
            self._drop(child_id)
        self.blocks.pop(block_id, None)

    # -- inspection helpers --------------------------------------------------

    def flat(self, parent_id: str | None = None, depth: int = 0) -> list[tuple[int, str, str]]:
        """(depth, kind, text) for every block in document order."""
        rows: list[tuple[int, str, str]] = []
        for child_id in self.children.get(parent_id or self.root_id, []):
            block = self.blocks[child_id]
            rows.append((depth, block.kind, block.plain_text))
            rows.extend(self.flat(child_id, depth + 1))
        return rows

    def top_level_texts(self) -> list[str]:
        return [self.blocks[i].plain_text for i in self.children[self.root_id]]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)


@pytest.fixture
def config(tmp_path):
    cfg = Config(data_dir=tmp_path, user_id="user-1", debounce_seconds=0.01)
    cfg.ensure_dirs()
    return cfg


@pytest.fixture
def storage(config):
    manager = StorageManager(config)
    yield manager
    manager.close()


@pytest.fixture
def page():
    return FakeNotionPage()


@pytest.fixture
def configured(storage, config):
    """Enable Notion sync for the test user."""
    settings = NotionSettings(
        user_id=config.user_id,
        notion_api_key="secret_test",
        notion_page_id=ROOT_ID,
    )
    storage.save_notion_settings(settings)
    return settings
