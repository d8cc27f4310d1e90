"""Finding a highlight's run of blocks on the remote page.

The page is a flat sequence of blocks in which highlights are separated by
top-level empty paragraphs. A highlight is identified only by its text, so
matching compares normalized whole runs, never substrings.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from highlight_sync.blocks import ContentBlock, is_sentinel
from highlight_sync.codec import encode
from highlight_sync.flatten import flatten_for_sync

logger = logging.getLogger(__name__)

BLOCK_BOUNDARY = "\u2029"

_SPACES_RE = re.compile("[\u00a0\u2000-\u200b\u202f\u205f\u3000]")
_DASHES_RE = re.compile("[\u2010-\u2015\u2212]")
_DOUBLE_QUOTES_RE = re.compile("[\u201c\u201d\u201e\u00ab\u00bb]")
_SINGLE_QUOTES_RE = re.compile("[\u2018\u2019\u201a\u2032]")
_BULLETS_RE = re.compile("[\u2022\u2043\u2219\u25aa\u25e6]")
_LIST_MARKER_RE = re.compile(r"^(?:[-*]|\d+[.)])\s+")
_WHITESPACE_RE = re.compile(r"\s+")


class HighlightNotFoundError(LookupError):
    """No run on the remote page matches the highlight's text."""


def normalize_text(text: str) -> str:
    """Canonical form used to compare local text with remote block text."""
    s = (text or "").lower()
    s = _SPACES_RE.sub(" ", s)
    s = _DASHES_RE.sub("-", s)
    s = _DOUBLE_QUOTES_RE.sub('"', s)
    s = _SINGLE_QUOTES_RE.sub("'", s)
    s = _BULLETS_RE.sub(" ", s)
    s = _WHITESPACE_RE.sub(" ", s).strip()
    return _LIST_MARKER_RE.sub("", s)


@dataclass(frozen=True)
class Fingerprint:
    """Normalized per-block texts of one highlight."""

    parts: tuple[str, ...]

    @classmethod
    def from_texts(cls, texts: Iterable[str]) -> Fingerprint:
        return cls(tuple(part for part in (normalize_text(t) for t in texts) if part))

    @classmethod
    def from_blocks(cls, blocks: Iterable[ContentBlock]) -> Fingerprint:
        return cls.from_texts(block.plain_text for block in blocks)

    @property
    def exact(self) -> str:
        return BLOCK_BOUNDARY.join(self.parts)

    @property
    def tolerant(self) -> str:
        return " ".join(self.parts)

    @property
    def is_empty(self) -> bool:
        return not self.parts


def fingerprint_from_content(text: str | None, html: str | None) -> list[Fingerprint]:
    """Candidate fingerprints from a payload's HTML and its plain text."""
    candidates: list[Fingerprint] = []
    if html and html.strip():
        candidates.append(Fingerprint.from_blocks(flatten_for_sync(encode(html))))
    if text:
        candidates.append(Fingerprint.from_texts(text.splitlines()))

    unique: list[Fingerprint] = []
    for fingerprint in candidates:
        if not fingerprint.is_empty and fingerprint not in unique:
            unique.append(fingerprint)
    return unique


@dataclass
class Run:
    """Blocks between two sentinels; ``start``/``end`` index the sequence."""

    start: int
    end: int
    blocks: list[ContentBlock]
    complete: bool


def iter_runs(blocks: list[ContentBlock]) -> Iterator[Run]:
    """Yield the runs of a flattened page, including a trailing unterminated one."""
    start: int | None = None
    for index, block in enumerate(blocks):
        if is_sentinel(block):
            if start is not None:
                yield Run(start, index, blocks[start:index], complete=True)
                start = None
        elif start is None:
            start = index
    if start is not None:
        yield Run(start, len(blocks), blocks[start:], complete=False)


@dataclass
class RunMatch:
    blocks: list[ContentBlock]
    start: int
    end: int
    exact: bool
    sentinel_before: ContentBlock | None
    sentinel_after: ContentBlock | None

    @property
    def top_level(self) -> list[ContentBlock]:
        return [block for block in self.blocks if block.parent_id is None]


def _match(run: Run, fingerprints: list[Fingerprint]) -> bool | None:
    """True for an exact match, False for a tolerant one, None for neither."""
    found = Fingerprint.from_blocks(run.blocks)
    if any(found.exact == fp.exact for fp in fingerprints):
        return True
    if any(found.tolerant == fp.tolerant for fp in fingerprints):
        return False
    return None


def locate(blocks: list[ContentBlock], fingerprints: list[Fingerprint]) -> RunMatch:
    """Find the run matching any of the fingerprints.

    The first exact match in document order wins, then the first tolerant
    match. A trailing run with no sentinel after it is only considered when
    no complete run matched.
    """
    fingerprints = [fp for fp in fingerprints if not fp.is_empty]
    if not fingerprints:
        raise HighlightNotFoundError("Highlight has no text to locate")

    exact_runs: list[Run] = []
    tolerant_runs: list[Run] = []
    trailing: Run | None = None
    for run in iter_runs(blocks):
        if not run.complete:
            trailing = run
            continue
        result = _match(run, fingerprints)
        if result is True:
            exact_runs.append(run)
        elif result is False:
            tolerant_runs.append(run)

    if len(exact_runs) + len(tolerant_runs) > 1:
        logger.warning(
            "Found %d runs matching highlight (%d exact), using the first",
            len(exact_runs) + len(tolerant_runs),
            len(exact_runs),
        )

    if exact_runs:
        chosen, exact = exact_runs[0], True
    elif tolerant_runs:
        chosen, exact = tolerant_runs[0], False
    elif trailing is not None and _match(trailing, fingerprints) is not None:
        chosen, exact = trailing, bool(_match(trailing, fingerprints))
    else:
        raise HighlightNotFoundError(
            f"No block run matches highlight text {fingerprints[0].tolerant[:80]!r}"
        )

    before = blocks[chosen.start - 1] if chosen.start > 0 else None
    after = blocks[chosen.end] if chosen.end < len(blocks) else None
    return RunMatch(
        blocks=chosen.blocks,
        start=chosen.start,
        end=chosen.end,
        exact=exact,
        sentinel_before=before if before is not None and is_sentinel(before) else None,
        sentinel_after=after if after is not None and is_sentinel(after) else None,
    )
