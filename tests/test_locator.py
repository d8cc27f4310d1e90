"""Tests for finding a highlight's run on the remote page."""

from __future__ import annotations

import logging

import pytest

from highlight_sync.blocks import BulletedItem, InlineRun, Paragraph
from highlight_sync.locator import (
    BLOCK_BOUNDARY,
    Fingerprint,
    HighlightNotFoundError,
    fingerprint_from_content,
    iter_runs,
    locate,
    normalize_text,
)


def _p(block_id: str, text: str = "", parent_id: str | None = None) -> Paragraph:
    runs = [InlineRun(text=text)] if text else []
    return Paragraph(id=block_id, parent_id=parent_id, runs=runs)


def _page(*runs: list[str], trailing_sentinel: bool = True):
    """Build a flat page: each run's paragraphs followed by a sentinel."""
    blocks = []
    counter = 0
    for index, texts in enumerate(runs):
        for text in texts:
            counter += 1
            blocks.append(_p(f"b{counter}", text))
        if trailing_sentinel or index < len(runs) - 1:
            counter += 1
            blocks.append(_p(f"s{counter}"))
    return blocks


class TestNormalizeText:
    def test_case_and_whitespace(self):
        assert normalize_text("  Hello   World \n") == "hello world"

    def test_typographic_characters(self):
        text = "“Smart” quotes — it’s"
        assert normalize_text(text) == "\"smart\" quotes - it's"

    @pytest.mark.parametrize("text", ["- item", "* item", "1. item", "2) item", "• item"])
    def test_leading_list_marker_removed(self, text):
        assert normalize_text(text) == "item"

    def test_inner_dash_kept(self):
        assert normalize_text("well - known") == "well - known"


class TestFingerprint:
    def test_exact_and_tolerant_forms(self):
        fp = Fingerprint.from_texts(["Hello", "", "World"])
        assert fp.parts == ("hello", "world")
        assert fp.exact == f"hello{BLOCK_BOUNDARY}world"
        assert fp.tolerant == "hello world"

    def test_html_and_text_candidates_deduplicated(self):
        fps = fingerprint_from_content("Hello world", "<p>Hello <b>world</b></p>")
        assert len(fps) == 1

    def test_multi_block_html_keeps_block_boundaries(self):
        fps = fingerprint_from_content("Line 1 Line 2", "<p>Line 1</p><p>Line 2</p>")
        assert [fp.parts for fp in fps] == [("line 1", "line 2"), ("line 1 line 2",)]

    def test_empty_content(self):
        assert fingerprint_from_content("", None) == []


class TestIterRuns:
    def test_runs_split_on_sentinels(self):
        blocks = _page(["a"], ["b", "c"])
        runs = list(iter_runs(blocks))
        assert [[b.plain_text for b in r.blocks] for r in runs] == [["a"], ["b", "c"]]
        assert all(r.complete for r in runs)

    def test_consecutive_sentinels_give_no_empty_run(self):
        blocks = [_p("s1"), _p("s2"), _p("b1", "a"), _p("s3")]
        runs = list(iter_runs(blocks))
        assert len(runs) == 1
        assert runs[0].start == 2

    def test_trailing_run_is_incomplete(self):
        runs = list(iter_runs(_page(["a"], ["b"], trailing_sentinel=False)))
        assert runs[-1].complete is False

    def test_nested_empty_paragraph_is_not_a_sentinel(self):
        blocks = [
            BulletedItem(id="li", has_children=True, runs=[InlineRun(text="item")]),
            _p("child", "", parent_id="li"),
            _p("s1"),
        ]
        runs = list(iter_runs(blocks))
        assert len(runs) == 1
        assert len(runs[0].blocks) == 2


class TestLocate:
    def test_exact_match_with_adjacent_sentinels(self):
        blocks = _page(["first"], ["Buy milk"], ["other"])
        match = locate(blocks, fingerprint_from_content("Buy milk", None))
        assert match.exact is True
        assert [b.plain_text for b in match.blocks] == ["Buy milk"]
        assert (match.start, match.end) == (2, 3)
        assert match.sentinel_before.id == "s2"
        assert match.sentinel_after.id == "s4"

    def test_tolerant_match_across_blocks(self):
        blocks = _page(["Hello", "world"])
        match = locate(blocks, fingerprint_from_content("Hello world", None))
        assert match.exact is False
        assert len(match.blocks) == 2

    def test_exact_match_beats_earlier_tolerant_match(self):
        blocks = _page(["Hello", "world"], ["Hello world"])
        match = locate(blocks, fingerprint_from_content("Hello world", None))
        assert match.exact is True
        assert match.start == 3

    def test_first_of_duplicate_matches_wins(self, caplog):
        blocks = _page(["same"], ["same"])
        with caplog.at_level(logging.WARNING, logger="highlight_sync.locator"):
            match = locate(blocks, fingerprint_from_content("same", None))
        assert match.start == 0
        assert "Found 2 runs" in caplog.text

    def test_substring_does_not_match(self):
        blocks = _page(["Buy milk and eggs"])
        with pytest.raises(HighlightNotFoundError):
            locate(blocks, fingerprint_from_content("Buy milk", None))

    def test_trailing_run_only_when_nothing_else_matches(self):
        blocks = _page(["x"], ["Buy milk"], trailing_sentinel=False)
        match = locate(blocks, fingerprint_from_content("Buy milk", None))
        assert match.start == 2
        assert match.sentinel_after is None
        assert match.sentinel_before.id == "s2"

    def test_complete_run_preferred_over_trailing_run(self):
        blocks = _page(["Buy milk"], ["Buy milk"], trailing_sentinel=False)
        match = locate(blocks, fingerprint_from_content("Buy milk", None))
        assert match.start == 0

    def test_typography_differences_still_match(self):
        blocks = _page(["It’s “fine” — really"])
        match = locate(blocks, fingerprint_from_content("it's \"fine\" - really", None))
        assert match.exact is True

    def test_no_fingerprint_raises(self):
        with pytest.raises(HighlightNotFoundError):
            locate(_page(["a"]), [])

    def test_locate_is_idempotent(self):
        blocks = _page(["a"], ["b"])
        fps = fingerprint_from_content("b", None)
        assert locate(blocks, fps) == locate(blocks, fps)

    def test_top_level_excludes_children(self):
        blocks = [
            BulletedItem(id="li", has_children=True, runs=[InlineRun(text="one")]),
            BulletedItem(id="child", parent_id="li", runs=[InlineRun(text="nested")]),
            _p("s1"),
        ]
        match = locate(blocks, fingerprint_from_content(None, "<ul><li>one<ul><li>nested</li></ul></li></ul>"))
        assert [b.id for b in match.top_level] == ["li"]
