"""notesearch — hybrid exact, full-text, and semantic search over a note store."""

from notesearch.coordinator import SearchCoordinator, create_coordinator, merge_results
from notesearch.errors import (
    BuildInProgress,
    EncodingFailed,
    ModelNotInitialized,
    NoteSearchError,
    NoteStoreUnavailable,
    NotFound,
    QueryFailed,
    StorageUnavailable,
)
from notesearch.models import NoteBody, NoteSummary, SearchResponse, SearchResult, SourceKind

__version__ = "0.1.0"

__all__ = [
    "BuildInProgress",
    "EncodingFailed",
    "ModelNotInitialized",
    "NoteBody",
    "NoteSearchError",
    "NoteStoreUnavailable",
    "NoteSummary",
    "NotFound",
    "QueryFailed",
    "SearchCoordinator",
    "SearchResponse",
    "SearchResult",
    "SourceKind",
    "StorageUnavailable",
    "__version__",
    "create_coordinator",
    "merge_results",
]
