"""Read-only note store contract consumed by the indexes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from notesearch.models import NoteBody, NoteSummary


@runtime_checkable
class NoteSource(Protocol):
    """The external system of record for notes, consulted only for reads.

    ``read_content`` raises ``NotFound`` for unknown ids. ``list_notes``
    raises ``NoteStoreUnavailable`` when the store itself cannot be read.
    """

    def list_notes(self, folder: str | None = None, limit: int = 100_000) -> list[NoteSummary]: ...

    def read_content(self, note_id: str) -> NoteBody: ...

    def latest_modification_time(self) -> datetime | None: ...
