"""Typed content blocks shared by the codec, the locator and the Notion client.

Blocks form a closed tagged union keyed on ``kind``. Blocks read back from
Notion also carry their remote ``id``, the ``parent_id`` of the block they
are nested under (``None`` at the top of the page) and ``has_children``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class InlineRun(BaseModel):
    """A span of text with uniform formatting."""

    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    code: bool = False
    link: str | None = None

    def same_format(self, other: InlineRun) -> bool:
        return (
            self.bold == other.bold
            and self.italic == other.italic
            and self.underline == other.underline
            and self.strikethrough == other.strikethrough
            and self.code == other.code
            and self.link == other.link
        )


class _Block(BaseModel):
    id: str | None = None
    parent_id: str | None = None
    has_children: bool = False
    runs: list[InlineRun] = Field(default_factory=list)

    @property
    def plain_text(self) -> str:
        return "".join(run.text for run in self.runs)


class Paragraph(_Block):
    kind: Literal["paragraph"] = "paragraph"


class Heading(_Block):
    kind: Literal["heading"] = "heading"
    level: int = Field(default=1, ge=1, le=3)


class Quote(_Block):
    kind: Literal["quote"] = "quote"


class Code(_Block):
    kind: Literal["code"] = "code"
    language: str = "plain text"


class BulletedItem(_Block):
    kind: Literal["bulleted_list_item"] = "bulleted_list_item"
    children: list[ContentBlock] = Field(default_factory=list)


class NumberedItem(_Block):
    kind: Literal["numbered_list_item"] = "numbered_list_item"
    children: list[ContentBlock] = Field(default_factory=list)


class UnsupportedBlock(_Block):
    """A remote block of a type the engine does not write (divider, image...).

    Only its visible text is kept so runs containing it can still be compared.
    """

    kind: Literal["unsupported"] = "unsupported"
    remote_type: str = "unsupported"


ContentBlock = Annotated[
    Union[Paragraph, Heading, Quote, Code, BulletedItem, NumberedItem, UnsupportedBlock],
    Field(discriminator="kind"),
]

BulletedItem.model_rebuild()
NumberedItem.model_rebuild()


def is_list_item(block: _Block) -> bool:
    return isinstance(block, (BulletedItem, NumberedItem))


def children_of(block: _Block) -> list[ContentBlock]:
    if isinstance(block, (BulletedItem, NumberedItem)):
        return block.children
    return []


def sentinel() -> Paragraph:
    """The empty paragraph placed between highlights on the remote page."""
    return Paragraph()


def is_sentinel(block: _Block) -> bool:
    """True for a top-level empty paragraph."""
    return (
        isinstance(block, Paragraph)
        and block.parent_id is None
        and not block.has_children
        and not any(run.text for run in block.runs)
    )
