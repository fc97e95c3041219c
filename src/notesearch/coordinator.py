"""Search coordinator — fans a query out to every index and merges the answers.

Each query runs the exact matcher, the full-text index, and the semantic
index concurrently on worker threads. Every source gets the same timeout;
a source that times out or fails is left out of the merged list instead of
failing the query. Results are merged per note id and ordered by:

1. number of contributing sources, descending;
2. best normalized score across those sources, descending;
3. note id, ascending.

Interactive callers tag queries with a monotonic sequence number
(:meth:`SearchCoordinator.submit`, :meth:`SearchCoordinator.debounced_search`)
and drop any response for which :meth:`SearchCoordinator.is_current` is False.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any

from notesearch.errors import NoteSearchError, NoteStoreUnavailable
from notesearch.models import (
    ExactHit,
    FullTextHit,
    FullTextResponse,
    IndexStatus,
    SearchResponse,
    SearchResult,
    SemanticSearchResult,
    SourceKind,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from datetime import datetime

    from notesearch.config import SearchConfig, Settings
    from notesearch.index.embedder import Encoder
    from notesearch.index.exact import ExactMatcher
    from notesearch.index.fulltext import FullTextIndex
    from notesearch.index.semantic import SemanticIndex
    from notesearch.models import NoteSummary
    from notesearch.notes.source import NoteSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def _merge_hit(
    merged: dict[str, SearchResult],
    kind: SourceKind,
    note_id: str,
    raw: float,
    normalized: float,
) -> SearchResult:
    result = merged.get(note_id)
    if result is None:
        result = SearchResult(note_id=note_id, score=normalized)
        merged[note_id] = result
    result.sources.add(kind)
    result.scores[kind] = max(result.scores.get(kind, raw), raw)
    result.score = max(result.score, normalized)
    return result


def merge_results(
    exact: list[ExactHit],
    fulltext: list[FullTextHit],
    semantic: list[SemanticSearchResult],
    limit: int | None = None,
) -> list[SearchResult]:
    """Merge per-source hit lists into one deterministic ranking.

    Raw scores stay source-scoped on ``SearchResult.scores``. The ``score``
    used to order notes with the same source count is normalized per source:
    exact scores as-is, full-text relevance relative to the best full-text
    hit of this query, cosine similarity clamped to [0, 1].
    """
    merged: dict[str, SearchResult] = {}

    for hit in exact:
        result = _merge_hit(merged, SourceKind.EXACT, hit.note_id, hit.score, hit.score)
        result.title = result.title or hit.title
        result.folder = result.folder or hit.folder

    top = max((h.score for h in fulltext), default=0.0)
    for hit in fulltext:
        normalized = hit.score / top if top > 0 else 0.0
        result = _merge_hit(merged, SourceKind.FULLTEXT, hit.note_id, hit.score, normalized)
        if hit.snippet:
            result.snippet = hit.snippet

    for hit in semantic:
        normalized = min(max(hit.score, 0.0), 1.0)
        result = _merge_hit(merged, SourceKind.SEMANTIC, hit.note_id, hit.score, normalized)
        result.title = result.title or hit.title
        result.folder = result.folder or hit.folder

    ordered = sorted(
        merged.values(),
        key=lambda r: (-len(r.sources), -r.score, r.note_id),
    )
    if limit is not None:
        ordered = ordered[:limit]
    return ordered


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class SearchCoordinator:
    """Query API consumed by a presentation layer.

    Owns the three indexes; callers only see merged results and status.
    """

    def __init__(
        self,
        source: NoteSource,
        exact: ExactMatcher,
        fulltext: FullTextIndex,
        semantic: SemanticIndex,
        config: SearchConfig,
    ) -> None:
        self.source = source
        self.exact = exact
        self.fulltext = fulltext
        self.semantic = semantic
        self.config = config

        self.searching: dict[SourceKind, bool] = dict.fromkeys(SourceKind, False)
        self._latest_sequence = 0
        self._seen_modification: datetime | None = None

    # ------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------

    @property
    def latest_sequence(self) -> int:
        return self._latest_sequence

    def next_sequence(self) -> int:
        """Issue a new query sequence number, superseding all earlier ones."""
        self._latest_sequence += 1
        return self._latest_sequence

    def is_current(self, response: SearchResponse) -> bool:
        """False once a newer query has been issued."""
        return response.sequence == self._latest_sequence

    @property
    def is_any_searching(self) -> bool:
        return any(self.searching.values())

    # ------------------------------------------------------------------
    # Per-source workers (run on threads)
    # ------------------------------------------------------------------

    def _exact_search(self, query: str, limit: int, latest: datetime | None) -> list[ExactHit]:
        if latest != self._seen_modification:
            self.exact.invalidate()
            self._seen_modification = latest
        return self.exact.search(query, limit)

    def _fulltext_search(self, query: str, limit: int, latest: datetime | None) -> FullTextResponse:
        stale = self.fulltext.stale_against(latest)
        return self.fulltext.search_with_auto_rebuild(query, limit, stale=stale)

    def _semantic_search(
        self, query: str, limit: int, latest: datetime | None
    ) -> list[SemanticSearchResult]:
        results = self.semantic.search(query, min(limit, self.config.semantic_limit))
        if self.semantic.is_indexed and self.semantic.stale_against(latest):
            self.semantic.rebuild_in_background()
        return results

    async def _latest_modification(self) -> datetime | None:
        """The store's latest modification time, read once per query.

        Falls back to the last value seen when the store does not answer in time.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.source.latest_modification_time),
                timeout=self.config.source_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("Note store modification time timed out")
            return self._seen_modification

    async def _run_source(
        self,
        kind: SourceKind,
        work: Coroutine[Any, Any, Any],
    ) -> Any:
        """Await one source with the configured timeout; None when it is left out."""
        self.searching[kind] = True
        try:
            return await asyncio.wait_for(work, timeout=self.config.source_timeout_seconds)
        except TimeoutError:
            logger.warning(
                "%s search timed out after %.1fs", kind.value, self.config.source_timeout_seconds
            )
            return None
        except NoteStoreUnavailable:
            raise
        except NoteSearchError as exc:
            logger.warning("%s search unavailable: %s", kind.value, exc)
            return None
        except Exception:
            logger.exception("%s search failed", kind.value)
            return None
        finally:
            self.searching[kind] = False

    # ------------------------------------------------------------------
    # Query API
    # ------------------------------------------------------------------

    async def _execute(self, sequence: int, query: str, limit: int | None) -> SearchResponse:
        if limit is None:
            limit = self.config.default_limit
        if not query.strip() or limit <= 0:
            return SearchResponse(sequence=sequence, query=query, results=[])

        latest = await self._latest_modification()
        outcomes = await asyncio.gather(
            self._run_source(
                SourceKind.EXACT, asyncio.to_thread(self._exact_search, query, limit, latest)
            ),
            self._run_source(
                SourceKind.FULLTEXT, asyncio.to_thread(self._fulltext_search, query, limit, latest)
            ),
            self._run_source(
                SourceKind.SEMANTIC, asyncio.to_thread(self._semantic_search, query, limit, latest)
            ),
            return_exceptions=True,
        )
        # Only NoteStoreUnavailable gets past _run_source
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        exact, fulltext, semantic = outcomes
        ft_response: FullTextResponse | None = fulltext
        results = merge_results(
            exact or [],
            ft_response.results if ft_response else [],
            semantic or [],
            limit,
        )
        for result in results:
            if not result.title:
                summary = self.exact.lookup(result.note_id) if self.exact.is_cached else None
                if summary is not None:
                    result.title = summary.title
                    result.folder = summary.folder

        logger.debug("Query %d %r: %d results", sequence, query, len(results))
        return SearchResponse(
            sequence=sequence,
            query=query,
            results=results,
            fulltext_stale=ft_response.was_stale if ft_response else False,
            fulltext_rebuilding=ft_response.is_rebuilding if ft_response else False,
        )

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Merged, source-tagged results for *query*."""
        response = await self.submit(query, limit)
        return response.results

    async def submit(self, query: str, limit: int | None = None) -> SearchResponse:
        """Run a query immediately, tagged with a fresh sequence number."""
        return await self._execute(self.next_sequence(), query, limit)

    async def debounced_search(
        self, query: str, limit: int | None = None
    ) -> SearchResponse | None:
        """Wait ``debounce_ms``; returns None if another query was issued meanwhile."""
        sequence = self.next_sequence()
        await asyncio.sleep(self.config.debounce_ms / 1000.0)
        if sequence != self._latest_sequence:
            logger.debug("Query %d %r superseded before dispatch", sequence, query)
            return None
        return await self._execute(sequence, query, limit)

    # ------------------------------------------------------------------
    # Building and status
    # ------------------------------------------------------------------

    async def build_indexes(self, progress: Callable[[int, int], None] | None = None) -> None:
        """Full rebuild of the full-text and semantic indexes."""
        await asyncio.gather(
            asyncio.to_thread(self.fulltext.build, progress),
            asyncio.to_thread(self.semantic.build_index, True),
        )
        self.exact.invalidate()

    def status(self) -> dict[SourceKind, IndexStatus]:
        return {
            SourceKind.FULLTEXT: self.fulltext.staleness_info(),
            SourceKind.SEMANTIC: self.semantic.staleness_info(),
        }

    # ------------------------------------------------------------------
    # Incremental maintenance
    # ------------------------------------------------------------------

    def note_changed(self, note: NoteSummary) -> None:
        """A note was created or edited: refresh titles and its embedding."""
        self.exact.invalidate()
        self.semantic.add_note(note.id, note.title, note.folder)

    def note_removed(self, note_id: str) -> None:
        self.exact.invalidate()
        self.semantic.remove_note(note_id)

    def close(self, timeout: float | None = 5.0) -> None:
        """Give in-flight background rebuilds a chance to finish."""
        self.fulltext.wait_for_rebuild(timeout)
        self.semantic.wait_for_rebuild(timeout)


def create_coordinator(
    settings: Settings,
    source: NoteSource | None = None,
    embedder_factory: Callable[[], Encoder] | None = None,
) -> SearchCoordinator:
    """Wire the indexes for *settings*. Defaults to the markdown note folder."""
    from notesearch.index.exact import ExactMatcher
    from notesearch.index.fulltext import FullTextIndex
    from notesearch.index.semantic import SemanticIndex
    from notesearch.notes.markdown import MarkdownNoteSource

    def _default_embedder() -> Encoder:
        from notesearch.index.embedder import TextEmbedder
        from notesearch.index.embedding_cache import EmbeddingCache

        cache = None
        if settings.embedding.cache_enabled:
            cache = EmbeddingCache(settings.embedding_cache_path)
        return TextEmbedder(settings.embedding, settings.embedding_api_key, cache=cache)

    limit = settings.notes.list_limit
    source_factory: Callable[[], NoteSource] | None = None
    if source is None:
        source = MarkdownNoteSource(settings.notes)
        # Background rebuilds read through their own handle
        source_factory = functools.partial(MarkdownNoteSource, settings.notes)

    return SearchCoordinator(
        source=source,
        exact=ExactMatcher(source, list_limit=limit),
        fulltext=FullTextIndex(
            settings.fulltext, source, list_limit=limit, source_factory=source_factory
        ),
        semantic=SemanticIndex(source, embedder_factory or _default_embedder, list_limit=limit),
        config=settings.search,
    )
