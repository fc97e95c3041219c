"""Tests for MarkdownNoteSource — listing, reading, and change detection on disk."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from notesearch.config import NotesConfig
from notesearch.errors import NotFound, NoteStoreUnavailable, PathTraversalError
from notesearch.notes.markdown import MarkdownNoteSource
from notesearch.notes.source import NoteSource

if TYPE_CHECKING:
    from pathlib import Path

OLD = datetime(2023, 5, 1, tzinfo=UTC).timestamp()


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _age_everything(root: Path) -> None:
    for path in [root, *root.rglob("*")]:
        os.utime(path, (OLD, OLD))


@pytest.fixture
def notes_root(tmp_path: Path) -> Path:
    root = tmp_path / "notes"
    _write(root, "inbox.md", "Loose thoughts about compilers.")
    _write(root, "Work/weekly-review.md", "Review the quarterly revenue numbers.")
    _write(
        root,
        "Work/plan.md",
        "---\ntitle: Project Plan\ntags: [planning]\n---\nMilestones and owners.",
    )
    _write(root, ".obsidian/workspace.md", "editor state")
    _write(root, "Work/attachment.txt", "not a note")
    return root


@pytest.fixture
def store(notes_root: Path) -> MarkdownNoteSource:
    return MarkdownNoteSource(NotesConfig(path=notes_root))


class TestListNotes:
    def test_satisfies_protocol(self, store: MarkdownNoteSource) -> None:
        assert isinstance(store, NoteSource)

    def test_lists_markdown_only(self, store: MarkdownNoteSource) -> None:
        ids = [n.id for n in store.list_notes()]
        assert ids == ["Work/plan.md", "Work/weekly-review.md", "inbox.md"]

    def test_titles_and_folders(self, store: MarkdownNoteSource) -> None:
        by_id = {n.id: n for n in store.list_notes()}
        assert by_id["Work/plan.md"].title == "Project Plan"
        assert by_id["Work/weekly-review.md"].title == "weekly review"
        assert by_id["Work/plan.md"].folder == "Work"
        assert by_id["inbox.md"].folder is None
        assert by_id["inbox.md"].modified_at.tzinfo is not None

    def test_folder_filter(self, store: MarkdownNoteSource) -> None:
        assert [n.id for n in store.list_notes(folder="Work")] == [
            "Work/plan.md",
            "Work/weekly-review.md",
        ]

    def test_limit(self, store: MarkdownNoteSource) -> None:
        assert len(store.list_notes(limit=2)) == 2

    def test_unparseable_note_skipped(
        self, store: MarkdownNoteSource, notes_root: Path
    ) -> None:
        _write(notes_root, "broken.md", "---\ntitle: [unclosed\n---\nbody")
        ids = {n.id for n in store.list_notes()}
        assert "broken.md" not in ids
        assert "inbox.md" in ids

    def test_missing_root(self, tmp_path: Path) -> None:
        missing = MarkdownNoteSource(NotesConfig(path=tmp_path / "nope"))
        with pytest.raises(NoteStoreUnavailable):
            missing.list_notes()
        with pytest.raises(NoteStoreUnavailable):
            missing.latest_modification_time()


class TestReadContent:
    def test_body_without_frontmatter(self, store: MarkdownNoteSource) -> None:
        body = store.read_content("Work/plan.md")
        assert body.title == "Project Plan"
        assert body.folder == "Work"
        assert body.content == "Milestones and owners."

    def test_plain_note(self, store: MarkdownNoteSource) -> None:
        assert store.read_content("inbox.md").content == "Loose thoughts about compilers."

    @pytest.mark.parametrize(
        "note_id",
        [
            "missing.md",
            "Work/attachment.txt",
            "Work",
            "",
            ".obsidian/workspace.md",
            "../outside.md",
            "../../etc/passwd",
            "Work/../../outside.md",
            "/etc/passwd",
        ],
    )
    def test_not_found(self, store: MarkdownNoteSource, note_id: str) -> None:
        with pytest.raises(NotFound) as exc_info:
            store.read_content(note_id)
        assert exc_info.value.note_id == note_id

    def test_traversal_never_reads_outside_root(
        self, store: MarkdownNoteSource, notes_root: Path
    ) -> None:
        _write(notes_root.parent, "outside.md", "secret")
        with pytest.raises(NotFound) as exc_info:
            store.read_content("../outside.md")
        assert isinstance(exc_info.value.__cause__, PathTraversalError)

    def test_parent_segments_inside_root(self, store: MarkdownNoteSource) -> None:
        body = store.read_content("Work/../inbox.md")
        assert body.id == "inbox.md"


class TestNoteIdFor:
    def test_maps_paths_under_root(self, store: MarkdownNoteSource, notes_root: Path) -> None:
        assert store.note_id_for(notes_root / "Work" / "plan.md") == "Work/plan.md"
        assert store.note_id_for(str(notes_root / "inbox.md")) == "inbox.md"

    def test_deleted_files_still_map(self, store: MarkdownNoteSource, notes_root: Path) -> None:
        assert store.note_id_for(notes_root / "gone" / "old.md") == "gone/old.md"

    @pytest.mark.parametrize(
        "rel", ["Work/attachment.txt", ".obsidian/workspace.md", "../outside.md", "Work"]
    )
    def test_non_notes(self, store: MarkdownNoteSource, notes_root: Path, rel: str) -> None:
        assert store.note_id_for(notes_root / rel) is None

    def test_outside_root(self, store: MarkdownNoteSource, tmp_path: Path) -> None:
        assert store.note_id_for(tmp_path / "elsewhere.md") is None


class TestLatestModification:
    def test_newest_note_wins(self, store: MarkdownNoteSource, notes_root: Path) -> None:
        _age_everything(notes_root)
        assert store.latest_modification_time() == datetime.fromtimestamp(OLD, tz=UTC)

        newer = OLD + 3600
        os.utime(notes_root / "Work" / "plan.md", (newer, newer))
        assert store.latest_modification_time() == datetime.fromtimestamp(newer, tz=UTC)

    def test_deletion_bumps_folder(self, store: MarkdownNoteSource, notes_root: Path) -> None:
        _age_everything(notes_root)
        before = store.latest_modification_time()
        (notes_root / "Work" / "weekly-review.md").unlink()
        after = store.latest_modification_time()
        assert before is not None and after is not None
        assert after > before

    def test_ignores_excluded_and_non_markdown(
        self, store: MarkdownNoteSource, notes_root: Path
    ) -> None:
        _age_everything(notes_root)
        newer = OLD + 7200
        os.utime(notes_root / ".obsidian" / "workspace.md", (newer, newer))
        os.utime(notes_root / "Work" / "attachment.txt", (newer, newer))
        assert store.latest_modification_time() == datetime.fromtimestamp(OLD, tz=UTC)
