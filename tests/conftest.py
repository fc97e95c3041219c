"""Shared fakes: an in-memory note source and a deterministic bag-of-words encoder."""

from __future__ import annotations

import hashlib
import re
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from notesearch.config import FullTextConfig, SearchConfig
from notesearch.errors import EncodingFailed, NotFound, NoteStoreUnavailable
from notesearch.models import NoteBody, NoteSummary

if TYPE_CHECKING:
    from pathlib import Path

BASE_TIME = datetime(2020, 1, 15, 9, 0, tzinfo=UTC)
DIMS = 64
_WORD = re.compile(r"[a-z0-9]+")


class FakeNoteSource:
    """In-memory NoteSource with hooks for failures and slow listings."""

    def __init__(self) -> None:
        self.notes: dict[str, NoteBody] = {}
        self.latest: datetime | None = None
        self.fail_reads: set[str] = set()
        self.available = True
        self.list_calls = 0
        self.latest_calls = 0
        self.list_gate: threading.Event | None = None
        self.list_started = threading.Event()
        self.read_gate: threading.Event | None = None
        self.read_started = threading.Event()

    def add(
        self,
        note_id: str,
        title: str,
        content: str = "",
        folder: str | None = None,
        modified_at: datetime = BASE_TIME,
    ) -> None:
        self.notes[note_id] = NoteBody(
            id=note_id,
            title=title,
            folder=folder,
            modified_at=modified_at,
            content=content,
        )
        if self.latest is None or modified_at > self.latest:
            self.latest = modified_at

    def touch(self, when: datetime | None = None) -> None:
        """Advance the store's latest modification time (default: now)."""
        self.latest = when or datetime.now(UTC)

    def list_notes(self, folder: str | None = None, limit: int = 100_000) -> list[NoteSummary]:
        if not self.available:
            raise NoteStoreUnavailable("note store offline")
        self.list_calls += 1
        self.list_started.set()
        if self.list_gate is not None:
            self.list_gate.wait(5)
        summaries = [
            NoteSummary(id=n.id, title=n.title, folder=n.folder, modified_at=n.modified_at)
            for n in self.notes.values()
            if folder is None or n.folder == folder
        ]
        return summaries[:limit]

    def read_content(self, note_id: str) -> NoteBody:
        self.read_started.set()
        if self.read_gate is not None:
            self.read_gate.wait(5)
        if note_id in self.fail_reads or note_id not in self.notes:
            raise NotFound(note_id)
        return self.notes[note_id]

    def latest_modification_time(self) -> datetime | None:
        self.latest_calls += 1
        if not self.available:
            raise NoteStoreUnavailable("note store offline")
        return self.latest


class FakeEncoder:
    """Hashes lowercase words into a fixed-width count vector."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.fail_on = fail_on or set()
        self.calls = 0

    def encode(self, text: str) -> list[float]:
        self.calls += 1
        if text in self.fail_on:
            raise EncodingFailed(f"cannot encode {text!r}")
        vector = [0.0] * DIMS
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIMS
            vector[bucket] += 1.0
        return vector


@pytest.fixture
def source() -> FakeNoteSource:
    return FakeNoteSource()


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def fulltext_config(tmp_path: Path) -> FullTextConfig:
    return FullTextConfig(cache_dir=tmp_path / "cache")


@pytest.fixture
def search_config() -> SearchConfig:
    return SearchConfig(source_timeout_seconds=2.0, debounce_ms=20)
