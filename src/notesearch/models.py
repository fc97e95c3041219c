"""Data models for notes, index hits, and merged search results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003 — Pydantic needs datetime at runtime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class NoteSummary(BaseModel):
    """Immutable snapshot of a note as listed by the note store."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    folder: str | None = None
    modified_at: datetime

    @property
    def embedding_text(self) -> str:
        """Title, followed by the folder name when there is one."""
        if self.folder:
            return f"{self.title} {self.folder}"
        return self.title


class NoteBody(BaseModel):
    """Full plain-text content of a note plus its summary fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    folder: str | None = None
    modified_at: datetime
    content: str = ""


class SourceKind(StrEnum):
    """Retrieval method that produced a match."""

    EXACT = "exact"
    FULLTEXT = "fulltext"
    SEMANTIC = "semantic"


@dataclass(frozen=True, slots=True)
class ExactHit:
    """Title match from the exact matcher."""

    note_id: str
    title: str
    folder: str | None
    score: float


@dataclass(frozen=True, slots=True)
class FullTextHit:
    """Full-text match. ``score`` is the negated bm25 rank (higher is better)."""

    note_id: str
    snippet: str
    score: float = 0.0


@dataclass(frozen=True, slots=True)
class SemanticSearchResult:
    """Nearest-neighbour match from the semantic index."""

    note_id: str
    score: float
    title: str
    folder: str | None = None


@dataclass(frozen=True, slots=True)
class FullTextResponse:
    """Results of a full-text search plus the index freshness at query time."""

    results: list[FullTextHit]
    was_stale: bool
    is_rebuilding: bool


@dataclass(slots=True)
class SearchResult:
    """One merged result. ``score`` is the best normalized score across sources."""

    note_id: str
    score: float
    snippet: str | None = None
    sources: set[SourceKind] = field(default_factory=set)
    scores: dict[SourceKind, float] = field(default_factory=dict)
    title: str = ""
    folder: str | None = None

    @property
    def display_source(self) -> str:
        """The single contributing source, or ``multiple``."""
        if len(self.sources) == 1:
            return next(iter(self.sources)).value
        return "multiple"


@dataclass(frozen=True, slots=True)
class SearchResponse:
    """Merged results of one query, tagged with its sequence number."""

    sequence: int
    query: str
    results: list[SearchResult]
    fulltext_stale: bool = False
    fulltext_rebuilding: bool = False


@dataclass(frozen=True, slots=True)
class IndexStatus:
    """Staleness and size of one index, for status display."""

    is_stale: bool
    last_build: datetime | None
    indexed_count: int
    is_rebuilding: bool = False
    message: str = ""
