"""Note store access — the read-only source contract, a markdown implementation, and a watcher."""

from notesearch.notes.markdown import MarkdownNoteSource
from notesearch.notes.source import NoteSource
from notesearch.notes.watcher import NoteWatcher

__all__ = [
    "MarkdownNoteSource",
    "NoteSource",
    "NoteWatcher",
]
