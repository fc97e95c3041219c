"""Tests for ExactMatcher — title prefix/substring matching."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from notesearch.index.exact import ExactMatcher

if TYPE_CHECKING:
    from conftest import FakeNoteSource


@pytest.fixture
def matcher(source: FakeNoteSource) -> ExactMatcher:
    source.add("n1", "Project Plan", folder="Work")
    source.add("n2", "Grocery list")
    source.add("n3", "Plan B")
    source.add("n4", "Planning notes")
    return ExactMatcher(source)


def test_interior_match_scores_half(source: FakeNoteSource) -> None:
    source.add("n1", "Project Plan", folder="Work")
    hits = ExactMatcher(source).search("plan")
    assert [(h.note_id, h.score) for h in hits] == [("n1", 0.5)]
    assert hits[0].folder == "Work"


def test_prefix_match_scores_one(source: FakeNoteSource) -> None:
    source.add("n1", "Project Plan", folder="Work")
    hits = ExactMatcher(source).search("Project")
    assert [(h.note_id, h.score) for h in hits] == [("n1", 1.0)]


def test_case_insensitive(matcher: ExactMatcher) -> None:
    assert {h.note_id for h in matcher.search("GROCERY")} == {"n2"}


def test_prefix_before_interior_then_shorter_title(matcher: ExactMatcher) -> None:
    hits = matcher.search("plan")
    # Prefix matches first, shorter title first within a score
    assert [h.note_id for h in hits] == ["n3", "n4", "n1"]
    assert [h.score for h in hits] == [1.0, 1.0, 0.5]


def test_ties_broken_by_note_id(source: FakeNoteSource) -> None:
    source.add("b", "Ideas")
    source.add("a", "Ideas")
    assert [h.note_id for h in ExactMatcher(source).search("idea")] == ["a", "b"]


def test_limit(matcher: ExactMatcher) -> None:
    assert len(matcher.search("plan", limit=2)) == 2


def test_blank_query_matches_nothing(matcher: ExactMatcher) -> None:
    assert matcher.search("") == []
    assert matcher.search("   ") == []


def test_empty_source(source: FakeNoteSource) -> None:
    assert ExactMatcher(source).search("anything") == []


class TestCache:
    def test_titles_cached_until_invalidated(self, source: FakeNoteSource) -> None:
        matcher = ExactMatcher(source)
        assert matcher.search("budget") == []
        source.add("n9", "Budget 2026")
        assert matcher.search("budget") == []  # still cached
        assert source.list_calls == 1

        matcher.invalidate()
        assert [h.note_id for h in matcher.search("budget")] == ["n9"]
        assert source.list_calls == 2

    def test_lookup(self, matcher: ExactMatcher) -> None:
        summary = matcher.lookup("n1")
        assert summary is not None
        assert summary.title == "Project Plan"
        assert matcher.lookup("missing") is None
        assert matcher.is_cached
