"""Error taxonomy shared by the note source, the indexes, and the coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class NoteSearchError(Exception):
    """Base class for all notesearch errors."""


class StorageUnavailable(NoteSearchError):
    """The full-text index file cannot be opened or created."""


class QueryFailed(NoteSearchError):
    """Malformed query or engine-level failure; carries the engine diagnostic."""


class ModelNotInitialized(NoteSearchError):
    """The embedding model could not be initialized."""


class EncodingFailed(NoteSearchError):
    """Text could not be encoded into a vector."""


class BuildInProgress(NoteSearchError):
    """A build is already running for this index."""


class NoteStoreUnavailable(NoteSearchError):
    """The note store cannot be listed at all."""


class NotFound(NoteSearchError, LookupError):
    """A note id is absent from the note store."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id!r}")


class PathTraversalError(ValueError):
    """Raised when a note id resolves outside the note folder root."""

    def __init__(self, user_path: str, root: Path) -> None:
        self.user_path = user_path
        self.root = root
        super().__init__(f"Path traversal blocked: '{user_path}' escapes note root '{root}'")
