"""Incremental index maintenance — debounced processing of note file changes.

Bridges note id changes from ``NoteWatcher`` to the coordinator:

* **Debounce** — coalesces bursts of saves for the same note into one pass
  after ``debounce_ms`` of silence.
* **Semantic upkeep** — created/modified notes are re-embedded and deleted
  notes dropped, without a full semantic rebuild.
* **Full-text upkeep** — any processed change schedules a single-flight
  background rebuild of the full-text index.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from notesearch.errors import NoteSearchError, NotFound
from notesearch.models import NoteSummary

if TYPE_CHECKING:
    from notesearch.config import WatchConfig
    from notesearch.coordinator import SearchCoordinator
    from notesearch.notes.source import NoteSource

logger = logging.getLogger(__name__)


class IndexMaintainer:
    """Applies note changes to the indexes with per-note debouncing.

    Call :meth:`handle_change` from the watcher callback. Watchdog invokes
    it on its own thread, so work is handed to *loop* thread-safely.
    """

    def __init__(
        self,
        config: WatchConfig,
        coordinator: SearchCoordinator,
        source: NoteSource,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._config = config
        self._coordinator = coordinator
        self._source = source
        self._loop = loop

        # note id -> scheduled flush
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self.processed = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_change(self, note_id: str, event_type: str) -> None:
        """Entry point called by ``NoteWatcher`` from any thread."""
        self._loop.call_soon_threadsafe(self._schedule, note_id, event_type)

    @property
    def pending_count(self) -> int:
        """Number of notes awaiting debounce resolution."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Internal processing
    # ------------------------------------------------------------------

    def _schedule(self, note_id: str, event_type: str) -> None:
        previous = self._pending.pop(note_id, None)
        if previous is not None:
            previous.cancel()

        def _fire() -> None:
            self._loop.create_task(self._process(note_id, event_type))

        self._pending[note_id] = self._loop.call_later(self._config.debounce_ms / 1000.0, _fire)

    def _remove(self, note_id: str) -> None:
        self._coordinator.note_removed(note_id)
        logger.info("Watch: removed %s", note_id)

    async def _process(self, note_id: str, event_type: str) -> None:
        self._pending.pop(note_id, None)

        if event_type == "deleted":
            self._remove(note_id)
        else:
            try:
                body = await asyncio.to_thread(self._source.read_content, note_id)
            except NotFound:
                # Gone again before the debounce fired
                body = None
            except NoteSearchError as exc:
                logger.warning("Cannot read %s: %s", note_id, exc)
                return
            except Exception:
                logger.exception("Failed to read %s", note_id)
                return

            if body is None:
                self._remove(note_id)
            else:
                summary = NoteSummary(
                    id=body.id,
                    title=body.title,
                    folder=body.folder,
                    modified_at=body.modified_at,
                )
                try:
                    await asyncio.to_thread(self._coordinator.note_changed, summary)
                except NoteSearchError as exc:
                    logger.warning("Cannot update semantic index for %s: %s", note_id, exc)
                logger.info("Watch: %s %s", event_type, note_id)

        self.processed += 1
        self._coordinator.fulltext.rebuild_in_background()
