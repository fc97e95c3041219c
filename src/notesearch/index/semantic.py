"""Semantic index — in-memory note embeddings ranked by cosine similarity.

The index is a single-owner object: its vector and metadata maps are only
read or replaced while holding the instance lock, so callers on different
threads are serialized and never observe a half-built index. Model
inference runs outside the lock; a full build encodes into fresh maps and
swaps them in at the end, so searches during a build keep answering from
the previous snapshot. Incremental changes made while a build runs are
journaled and replayed onto the fresh maps before the swap.

Vectors are float32 rows. Searching stacks them into one matrix (cached
until the next change) and scores every note with a single matrix-vector
product.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeAlias

import numpy as np

from notesearch.errors import BuildInProgress, EncodingFailed, ModelNotInitialized
from notesearch.index.embedder import cosine_scores
from notesearch.models import IndexStatus, SemanticSearchResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from notesearch.index.embedder import Encoder
    from notesearch.notes.source import NoteSource

logger = logging.getLogger(__name__)

_Metadata: TypeAlias = tuple[str, str | None]
# (note_id, vector, metadata); vector None means removal
_JournalEntry: TypeAlias = tuple[str, np.ndarray | None, _Metadata | None]


def _as_vector(values: list[float]) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float32).reshape(-1)
    if vector.size == 0:
        raise EncodingFailed("Encoder returned an empty vector")
    return vector


class SemanticIndex:
    """Note id → embedding vector, plus (title, folder) for every indexed id.

    The embedder is created on first use from *embedder_factory*; a failing
    factory surfaces as ``ModelNotInitialized`` and is retried on the next
    call. All vectors share the width of the first one indexed.
    """

    def __init__(
        self,
        source: NoteSource,
        embedder_factory: Callable[[], Encoder],
        *,
        list_limit: int = 100_000,
    ) -> None:
        self._source = source
        self._embedder_factory = embedder_factory
        self._list_limit = list_limit

        self._lock = threading.Lock()
        self._model_lock = threading.Lock()
        self._embedder: Encoder | None = None

        self._vectors: dict[str, np.ndarray] = {}
        self._metadata: dict[str, _Metadata] = {}
        self._matrix: tuple[list[str], np.ndarray, np.ndarray] | None = None
        self._journal: list[_JournalEntry] = []
        self._building = False
        self._last_build: datetime | None = None
        self._rebuild_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def indexed_count(self) -> int:
        with self._lock:
            return len(self._vectors)

    @property
    def is_indexed(self) -> bool:
        return self.indexed_count > 0

    @property
    def is_building(self) -> bool:
        with self._lock:
            return self._building

    @property
    def last_build_time(self) -> datetime | None:
        with self._lock:
            return self._last_build

    def stale_against(self, latest: datetime | None) -> bool:
        """Whether a store last modified at *latest* is newer than the last build."""
        last_build = self.last_build_time
        if last_build is None:
            return True
        if latest is None:
            return False
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=UTC)
        return latest > last_build

    @property
    def is_stale(self) -> bool:
        if self.last_build_time is None:
            return True
        return self.stale_against(self._source.latest_modification_time())

    def staleness_info(self) -> IndexStatus:
        last_build = self.last_build_time
        stale = self.is_stale
        if last_build is None:
            message = "Semantic index not built."
        elif stale:
            message = "Semantic index may be stale. Rebuilding in background..."
        else:
            message = "Semantic index is up to date."
        return IndexStatus(
            is_stale=stale,
            last_build=last_build,
            indexed_count=self.indexed_count,
            is_rebuilding=self.is_building,
            message=message,
        )

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    def _ensure_embedder(self) -> Encoder:
        with self._model_lock:
            if self._embedder is None:
                try:
                    self._embedder = self._embedder_factory()
                except ModelNotInitialized:
                    raise
                except Exception as exc:
                    raise ModelNotInitialized(str(exc)) from exc
                logger.info("Embedding model initialized")
            return self._embedder

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def _claim_build(self) -> bool:
        """Set the building flag and open a fresh journal. Caller holds the lock."""
        if self._building:
            return False
        self._building = True
        self._journal = []
        return True

    def build_index(self, force_rebuild: bool = False) -> int:
        """Encode every listed note. Returns the number of notes indexed.

        Raises BuildInProgress if another build is running. Without
        *force_rebuild*, a non-empty index is returned as-is.
        """
        with self._lock:
            if self._building:
                raise BuildInProgress("Semantic index build is already in progress")
            if not force_rebuild and self._vectors:
                return len(self._vectors)
            self._claim_build()
        return self._run_build()

    def _run_build(self) -> int:
        """Build with the ``_building`` flag already claimed; always releases it."""
        try:
            embedder = self._ensure_embedder()
            started = datetime.now(UTC)
            notes = self._source.list_notes(limit=self._list_limit)

            vectors: dict[str, np.ndarray] = {}
            metadata: dict[str, _Metadata] = {}
            width: int | None = None
            for note in notes:
                try:
                    vector = _as_vector(embedder.encode(note.embedding_text))
                except Exception as exc:
                    logger.warning("Skipping note %s: %s", note.id, exc)
                    continue
                if width is None:
                    width = vector.size
                elif vector.size != width:
                    logger.warning(
                        "Skipping note %s: %d dimensions, expected %d", note.id, vector.size, width
                    )
                    continue
                vectors[note.id] = vector
                metadata[note.id] = (note.title, note.folder)

            with self._lock:
                for note_id, vector, meta in self._journal:
                    if vector is None or meta is None:
                        vectors.pop(note_id, None)
                        metadata.pop(note_id, None)
                    elif width is None or vector.size == width:
                        vectors[note_id] = vector
                        metadata[note_id] = meta
                replayed = len(self._journal)
                self._vectors = vectors
                self._metadata = metadata
                self._matrix = None
                self._last_build = started
            logger.info(
                "Semantic build complete: %d/%d notes indexed (%d changes replayed)",
                len(vectors),
                len(notes),
                replayed,
            )
            return len(vectors)
        finally:
            with self._lock:
                self._building = False
                self._journal = []

    def rebuild_in_background(self) -> bool:
        """Start a forced rebuild on a worker thread unless one is running.

        Returns True if a rebuild was started.
        """
        with self._lock:
            if not self._claim_build():
                return False
        try:
            thread = threading.Thread(
                target=self._background_build,
                name="semantic-rebuild",
                daemon=True,
            )
            self._rebuild_thread = thread
            thread.start()
        except BaseException:
            with self._lock:
                self._building = False
            raise
        return True

    def _background_build(self) -> None:
        try:
            self._run_build()
        except Exception:
            logger.exception("Background semantic rebuild failed")

    def wait_for_rebuild(self, timeout: float | None = None) -> bool:
        """Join the background worker. Returns True when no build is running."""
        thread = self._rebuild_thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_building

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _stacked(self) -> tuple[list[str], np.ndarray, np.ndarray]:
        """Ids in ascending order with their vector matrix and row norms. Caller holds the lock."""
        if self._matrix is None:
            ids = sorted(self._vectors)
            if ids:
                matrix = np.stack([self._vectors[i] for i in ids])
            else:
                matrix = np.zeros((0, 0), dtype=np.float32)
            self._matrix = (ids, matrix, np.linalg.norm(matrix, axis=1))
        return self._matrix

    def search(self, query: str, limit: int = 10) -> list[SemanticSearchResult]:
        """Top *limit* notes by cosine similarity to the query, best first.

        Builds the index first when it is empty. Equal scores keep note id order.
        """
        if not query.strip() or limit <= 0:
            return []
        if self.indexed_count == 0:
            self.build_index()

        embedder = self._ensure_embedder()
        try:
            query_vector = np.asarray(embedder.encode(query), dtype=np.float32).reshape(-1)
        except EncodingFailed:
            raise
        except Exception as exc:
            raise EncodingFailed(str(exc)) from exc

        with self._lock:
            ids, matrix, norms = self._stacked()
            if not ids:
                return []
            scores = cosine_scores(query_vector, matrix, norms)
            # Stable sort over id-ordered rows breaks score ties by note id
            top = np.argsort(-scores, kind="stable")[:limit]
            return [
                SemanticSearchResult(
                    note_id=ids[row],
                    score=float(scores[row]),
                    title=self._metadata[ids[row]][0],
                    folder=self._metadata[ids[row]][1],
                )
                for row in top
            ]

    # ------------------------------------------------------------------
    # Incremental maintenance
    # ------------------------------------------------------------------

    def add_note(self, note_id: str, title: str, folder: str | None = None) -> None:
        """Encode and insert (or replace) one note. Encoding failures are skipped."""
        embedder = self._ensure_embedder()
        text = f"{title} {folder}" if folder else title
        try:
            vector = _as_vector(embedder.encode(text))
        except Exception as exc:
            logger.debug("Not indexing %s: %s", note_id, exc)
            return
        with self._lock:
            width = next((v.size for v in self._vectors.values()), vector.size)
            if vector.size != width:
                logger.warning(
                    "Not indexing %s: %d dimensions, expected %d", note_id, vector.size, width
                )
                return
            self._vectors[note_id] = vector
            self._metadata[note_id] = (title, folder)
            self._matrix = None
            if self._building:
                self._journal.append((note_id, vector, (title, folder)))

    def remove_note(self, note_id: str) -> None:
        with self._lock:
            self._vectors.pop(note_id, None)
            self._metadata.pop(note_id, None)
            self._matrix = None
            if self._building:
                self._journal.append((note_id, None, None))

    def clear_index(self) -> None:
        """Drop all vectors and metadata."""
        with self._lock:
            self._vectors.clear()
            self._metadata.clear()
            self._matrix = None
            self._last_build = None
