"""Exact matcher — case-insensitive substring match over cached note titles."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from notesearch.models import ExactHit

if TYPE_CHECKING:
    from notesearch.models import NoteSummary
    from notesearch.notes.source import NoteSource

logger = logging.getLogger(__name__)

PREFIX_SCORE = 1.0
SUBSTRING_SCORE = 0.5


class ExactMatcher:
    """Title matcher over an in-memory title cache.

    The cache is filled from the note source on first use and kept until
    :meth:`invalidate` is called. Nothing is persisted.
    """

    def __init__(self, source: NoteSource, list_limit: int = 100_000) -> None:
        self._source = source
        self._list_limit = list_limit
        self._lock = threading.Lock()
        self._titles: list[NoteSummary] | None = None
        self._by_id: dict[str, NoteSummary] = {}

    def refresh(self) -> int:
        """Reload titles from the note source. Returns the number cached."""
        notes = self._source.list_notes(limit=self._list_limit)
        with self._lock:
            self._titles = notes
            self._by_id = {n.id: n for n in notes}
        logger.debug("Exact matcher cached %d titles", len(notes))
        return len(notes)

    def invalidate(self) -> None:
        with self._lock:
            self._titles = None
            self._by_id = {}

    @property
    def is_cached(self) -> bool:
        with self._lock:
            return self._titles is not None

    def _snapshot(self) -> list[NoteSummary]:
        with self._lock:
            titles = self._titles
        if titles is None:
            self.refresh()
            with self._lock:
                titles = self._titles or []
        return titles

    def lookup(self, note_id: str) -> NoteSummary | None:
        """Cached summary for a note id, if any."""
        self._snapshot()
        with self._lock:
            return self._by_id.get(note_id)

    def search(self, query: str, limit: int = 20) -> list[ExactHit]:
        """Prefix matches score 1.0, interior matches 0.5.

        Ties are broken by shorter title, then note id.
        """
        needle = query.strip().casefold()
        if not needle or limit <= 0:
            return []

        hits: list[ExactHit] = []
        for summary in self._snapshot():
            title = summary.title.casefold()
            if title.startswith(needle):
                score = PREFIX_SCORE
            elif needle in title:
                score = SUBSTRING_SCORE
            else:
                continue
            hits.append(
                ExactHit(
                    note_id=summary.id,
                    title=summary.title,
                    folder=summary.folder,
                    score=score,
                )
            )

        hits.sort(key=lambda h: (-h.score, len(h.title), h.note_id))
        return hits[:limit]
