"""Conversion between highlight HTML and content blocks.

HTML is parsed with BeautifulSoup's ``html.parser`` builder and the resulting
tree is walked recursively. The builder closes unclosed tags at end of input
and ignores stray end tags, so every input has a defined result.
"""

from __future__ import annotations

import html as html_lib
import logging
from dataclasses import dataclass, replace

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

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
    children_of,
    is_list_item,
)

logger = logging.getLogger(__name__)

_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 3, "h5": 3, "h6": 3}
_LIST_TAGS = {"ul", "ol"}
_BLOCK_TAGS = set(_HEADING_LEVELS) | _LIST_TAGS | {"p", "div", "blockquote", "pre", "li"}
_SKIPPED_TAGS = {"hr", "img", "script", "style", "head", "title"}
_BOLD_TAGS = {"b", "strong"}
_ITALIC_TAGS = {"i", "em"}
_UNDERLINE_TAGS = {"u", "ins"}
_STRIKE_TAGS = {"s", "strike", "del"}
_KEPT_ATTRIBUTES = {"a": {"href"}}
_UNWRAPPED_TAGS = {"span", "font"}


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _text(node: NavigableString) -> str:
    return str(node).replace("\xa0", " ")


def _is_markup_only(node) -> bool:
    # comments, doctypes, CDATA and processing instructions carry no content
    return isinstance(node, PreformattedString)


def _sibling_items(li: Tag) -> list[Tag]:
    """Split ``<li>a<li>b``, which html.parser nests, into sibling items."""
    items = [li]
    while (inner := items[-1].find("li", recursive=False)) is not None:
        items.append(inner.extract())
    return items




@dataclass(frozen=True)
class _Format:
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    code: bool = False
    link: str | None = None

    def apply(self, element: Tag) -> _Format:
        tag = element.name
        if tag in _BOLD_TAGS:
            return replace(self, bold=True)
        if tag in _ITALIC_TAGS:
            return replace(self, italic=True)
        if tag in _UNDERLINE_TAGS:
            return replace(self, underline=True)
        if tag in _STRIKE_TAGS:
            return replace(self, strikethrough=True)
        if tag == "code":
            return replace(self, code=True)
        if tag == "a" and element.get("href"):
            return replace(self, link=element["href"])
        return self


_PLAIN = _Format()


class _RunBuilder:
    """Accumulates formatted text into runs, merging equal neighbours."""

    def __init__(self) -> None:
        self.runs: list[InlineRun] = []

    def add(self, text: str, fmt: _Format) -> None:
        if not text:
            return
        run = InlineRun(
            text=text,
            bold=fmt.bold,
            italic=fmt.italic,
            underline=fmt.underline,
            strikethrough=fmt.strikethrough,
            code=fmt.code,
            link=fmt.link,
        )
        if self.runs and self.runs[-1].same_format(run):
            self.runs[-1].text += text
        else:
            self.runs.append(run)

    def has_text(self) -> bool:
        return any(run.text.strip() for run in self.runs)

    def take(self) -> list[InlineRun]:
        runs, self.runs = self.runs, []
        return _trim_runs(runs)


def _trim_runs(runs: list[InlineRun]) -> list[InlineRun]:
    """Trim whitespace at the outer edges of a block, never between runs."""
    # whitespace-only edge runs go entirely; inner runs keep their spacing
    while runs and not runs[0].text.strip():
        runs.pop(0)
    while runs and not runs[-1].text.strip():
        runs.pop()
    if runs:
        runs[0].text = runs[0].text.lstrip()
        runs[-1].text = runs[-1].text.rstrip()
    return runs


def _text_content(element: Tag) -> str:
    parts: list[str] = []
    for child in element.children:
        if _is_markup_only(child):
            continue
        if isinstance(child, NavigableString):
            parts.append(_text(child))
        elif child.name == "br":
            parts.append("\n")
        elif child.name not in _SKIPPED_TAGS:
            parts.append(_text_content(child))
    return "".join(parts)


class _Encoder:
    def __init__(self) -> None:
        self.blocks: list[ContentBlock] = []
        self._paragraph = _RunBuilder()

    def encode(self, root: Tag) -> list[ContentBlock]:
        self._container(root, _PLAIN, split_newlines=True)
        self._flush_paragraph()
        return self.blocks

    def _flush_paragraph(self) -> None:
        if self._paragraph.has_text():
            self.blocks.append(Paragraph(runs=self._paragraph.take()))
        else:
            self._paragraph.take()

    def _container(self, element: Tag, fmt: _Format, *, split_newlines: bool) -> None:
        for child in element.children:
            if _is_markup_only(child):
                continue
            if isinstance(child, NavigableString):
                text = _text(child)
                if split_newlines and "\n" in text:
                    for index, part in enumerate(text.split("\n")):
                        if index:
                            self._flush_paragraph()
                        self._paragraph.add(part, fmt)
                else:
                    self._paragraph.add(text, fmt)
                continue

            tag = child.name
            if tag == "br":
                self._flush_paragraph()
            elif tag in _SKIPPED_TAGS:
                continue
            elif tag in _HEADING_LEVELS:
                self._flush_paragraph()
                runs = _inline_runs(child, fmt)
                if runs:
                    self.blocks.append(Heading(level=_HEADING_LEVELS[tag], runs=runs))
            elif tag == "blockquote":
                self._flush_paragraph()
                runs = _inline_runs(child, fmt)
                if runs:
                    self.blocks.append(Quote(runs=runs))
            elif tag == "pre":
                self._flush_paragraph()
                code = _text_content(child).strip()
                if code:
                    self.blocks.append(Code(runs=[InlineRun(text=code)]))
            elif tag == "p":
                self._flush_paragraph()
                self._container(child, fmt, split_newlines=False)
                self._flush_paragraph()
            elif tag == "div":
                self._flush_paragraph()
                self._container(child, fmt, split_newlines=True)
                self._flush_paragraph()
            elif tag in _LIST_TAGS:
                self._flush_paragraph()
                self.blocks.extend(_list_items(child, fmt))
            elif tag == "li":
                # stray item outside any list
                self._flush_paragraph()
                for li in _sibling_items(child):
                    item = _list_item(li, "ul", fmt)
                    if item is not None:
                        self.blocks.append(item)
            else:
                self._container(child, fmt.apply(child), split_newlines=split_newlines)


def _collect_inline(
    element: Tag,
    fmt: _Format,
    builder: _RunBuilder,
    nested_lists: list[Tag] | None = None,
) -> None:
    for child in element.children:
        if _is_markup_only(child):
            continue
        if isinstance(child, NavigableString):
            builder.add(_text(child), fmt)
            continue
        tag = child.name
        if tag == "br":
            builder.add("\n", fmt)
        elif tag in _SKIPPED_TAGS:
            continue
        elif tag in _LIST_TAGS and nested_lists is not None:
            nested_lists.append(child)
        elif tag in _BLOCK_TAGS:
            if builder.has_text():
                builder.add("\n", fmt)
            _collect_inline(child, fmt, builder, nested_lists)
        else:
            _collect_inline(child, fmt.apply(child), builder, nested_lists)


def _inline_runs(element: Tag, fmt: _Format) -> list[InlineRun]:
    builder = _RunBuilder()
    _collect_inline(element, fmt, builder)
    return builder.take()


def _list_item(li: Tag, list_tag: str, fmt: _Format) -> BulletedItem | NumberedItem | None:
    builder = _RunBuilder()
    nested: list[Tag] = []
    _collect_inline(li, fmt, builder, nested)
    children: list[ContentBlock] = []
    for nested_list in nested:
        children.extend(_list_items(nested_list, fmt))
    runs = builder.take()
    if not runs and not children:
        return None
    item_type = BulletedItem if list_tag == "ul" else NumberedItem
    return item_type(runs=runs, children=children)


def _list_items(list_element: Tag, fmt: _Format) -> list[ContentBlock]:
    items: list[ContentBlock] = []
    loose = _RunBuilder()

    def flush_loose() -> None:
        # text directly inside <ul> without an <li>
        if loose.has_text():
            item_type = BulletedItem if list_element.name == "ul" else NumberedItem
            items.append(item_type(runs=loose.take()))
        else:
            loose.take()

    for child in list_element.children:
        if _is_markup_only(child):
            continue
        if isinstance(child, NavigableString):
            loose.add(_text(child), fmt)
        elif child.name == "li":
            flush_loose()
            for li in _sibling_items(child):
                item = _list_item(li, list_element.name, fmt)
                if item is not None:
                    items.append(item)
        elif child.name in _LIST_TAGS:
            flush_loose()
            items.extend(_list_items(child, fmt))
        else:
            _collect_inline(child, fmt.apply(child), loose)
    flush_loose()
    return items


def strip_tags(html: str) -> str:
    """Tag-free, entity-decoded text."""
    soup = _parse(html or "")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text().replace("\xa0", " ")


def encode(html: str | None) -> list[ContentBlock]:
    """Convert an HTML fragment (or plain text) into content blocks.

    Never raises: content that cannot be structured degrades to a single
    paragraph of its tag-stripped text. Empty input gives one empty paragraph.
    """
    if not html or not html.strip():
        return [Paragraph()]

    try:
        blocks = _Encoder().encode(_parse(html))
    except Exception:
        logger.warning("Could not structure highlight content, using plain text", exc_info=True)
        blocks = []

    if blocks:
        return blocks

    text = strip_tags(html).strip()
    if text:
        logger.warning("Highlight content produced no blocks, using plain text")
        return [Paragraph(runs=[InlineRun(text=text)])]
    return [Paragraph()]


def encode_text(text: str | None) -> list[ContentBlock]:
    """One paragraph per non-blank line of plain text."""
    blocks: list[ContentBlock] = [
        Paragraph(runs=[InlineRun(text=line.strip())])
        for line in (text or "").splitlines()
        if line.strip()
    ]
    return blocks or [Paragraph()]


def encode_content(text: str | None, html: str | None) -> list[ContentBlock]:
    """Blocks for a highlight payload: HTML when it has visible text, else its plain text."""
    if html and html.strip():
        blocks = encode(html)
        if to_plain_text(blocks):
            return blocks
    return encode_text(text)


# ---------------------------------------------------------------------------
# Blocks -> HTML
# ---------------------------------------------------------------------------

# innermost first, so the link ends up outermost
_WRAP_ORDER = (
    ("bold", "strong"),
    ("italic", "em"),
    ("strikethrough", "s"),
    ("underline", "u"),
    ("code", "code"),
)


def _render_run(run: InlineRun) -> str:
    out = html_lib.escape(run.text, quote=False).replace("\n", "<br>")
    for attr, tag in _WRAP_ORDER:
        if getattr(run, attr):
            out = f"<{tag}>{out}</{tag}>"
    if run.link:
        out = f'<a href="{html_lib.escape(run.link)}">{out}</a>'
    return out


def _render_runs(runs: list[InlineRun]) -> str:
    return "".join(_render_run(run) for run in runs)


def _render_block(block: ContentBlock) -> str:
    if isinstance(block, Paragraph):
        return f"<p>{_render_runs(block.runs)}</p>"
    if isinstance(block, Heading):
        return f"<h{block.level}>{_render_runs(block.runs)}</h{block.level}>"
    if isinstance(block, Quote):
        return f"<blockquote>{_render_runs(block.runs)}</blockquote>"
    if isinstance(block, Code):
        return f"<pre><code>{html_lib.escape(block.plain_text, quote=False)}</code></pre>"
    if isinstance(block, (BulletedItem, NumberedItem)):
        return f"<li>{_render_runs(block.runs)}{decode(block.children)}</li>"
    if isinstance(block, UnsupportedBlock):
        return f"<p>{_render_runs(block.runs)}</p>" if block.runs else ""
    raise TypeError(f"Unknown block kind: {block!r}")


def decode(blocks: list[ContentBlock]) -> str:
    """Render content blocks back to HTML."""
    parts: list[str] = []
    index = 0
    while index < len(blocks):
        block = blocks[index]
        if is_list_item(block):
            tag = "ul" if isinstance(block, BulletedItem) else "ol"
            items: list[str] = []
            while index < len(blocks) and blocks[index].kind == block.kind:
                items.append(_render_block(blocks[index]))
                index += 1
            parts.append(f"<{tag}>{''.join(items)}</{tag}>")
            continue
        parts.append(_render_block(block))
        index += 1
    return "".join(parts)


def to_plain_text(blocks: list[ContentBlock]) -> str:
    """One line per block (nested list items included), blank blocks skipped."""
    lines: list[str] = []
    for block in blocks:
        text = block.plain_text.strip()
        if text:
            lines.append(text)
        lines.extend(
            line for line in to_plain_text(children_of(block)).split("\n") if line
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Sanitizing editor output
# ---------------------------------------------------------------------------


def sanitize_html(html: str | None) -> str | None:
    """Strip editor noise: style/class/data-* attributes and bare span wrappers."""
    if html is None:
        return None
    soup = _parse(html)
    for tag in soup.find_all(True):
        if tag.name in _UNWRAPPED_TAGS:
            tag.unwrap()
            continue
        kept = _KEPT_ATTRIBUTES.get(tag.name, set())
        tag.attrs = {name: value for name, value in tag.attrs.items() if name in kept}
    return str(soup)
