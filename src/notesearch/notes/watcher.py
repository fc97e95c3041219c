"""Note folder watcher — turns file system events into note id changes.

Watchdog reports raw paths; the handler asks the markdown source which of
them are notes and forwards ``(note_id, kind)`` pairs, where *kind* is one
of ``created``, ``modified`` or ``deleted``. A rename or move is reported
as ``deleted`` for the old id and ``created`` for the new one, so a move
into or out of an excluded folder yields only the side that is a note.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, TypeAlias

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.events import FileSystemEvent

    from notesearch.notes.markdown import MarkdownNoteSource

    ChangeCallback: TypeAlias = Callable[[str, str], None]

logger = logging.getLogger(__name__)


class NoteChangeHandler(FileSystemEventHandler):
    """Forwards file events for notes under *source*'s root as note ids."""

    def __init__(self, source: MarkdownNoteSource, on_change: ChangeCallback) -> None:
        self._source = source
        self._on_change = on_change

    def _report(self, raw_path: str | bytes, kind: str) -> None:
        if not raw_path:
            return
        note_id = self._source.note_id_for(os.fsdecode(raw_path))
        if note_id is None:
            return
        logger.debug("Note %s: %s", kind, note_id)
        self._on_change(note_id, kind)

    def on_created(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._report(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._report(event.src_path, "modified")

    def on_deleted(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._report(event.src_path, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        self._report(event.src_path, "deleted")
        self._report(event.dest_path, "created")


class NoteWatcher:
    """Runs a watchdog observer over the note folder.

    Usage:
        watcher = NoteWatcher(source, on_change=maintainer.handle_change)
        await watcher.run_async()  # until cancelled
    """

    def __init__(self, source: MarkdownNoteSource, on_change: ChangeCallback) -> None:
        self.root = source.root
        self.handler = NoteChangeHandler(source, on_change)
        self._observer: Observer | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Begin watching on the observer's own thread."""
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching notes at %s", self.root)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join()
        logger.info("Note watcher stopped")

    async def run_async(self) -> None:
        """Watch until the surrounding task is cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.stop()
