"""Full-text index — SQLite FTS5 over note titles, folders, and content.

The index lives in its own database file under the application cache
directory and never touches the note store. Key properties:

* **All-or-nothing rebuilds** — a rebuild clears and repopulates the FTS
  table inside one write transaction. The database runs in WAL mode, so
  concurrent readers keep seeing the previous snapshot until the commit.
* **One connection per operation** — SQLite connections are not shared
  across threads. Every search and every rebuild opens its own handle.
* **Single-flight background rebuilds** — :meth:`rebuild_in_background`
  starts at most one worker thread; calls made while it runs are no-ops.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeAlias

from notesearch.errors import BuildInProgress, QueryFailed, StorageUnavailable
from notesearch.models import FullTextHit, FullTextResponse, IndexStatus

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from notesearch.config import FullTextConfig
    from notesearch.notes.source import NoteSource

    ProgressCallback: TypeAlias = Callable[[int, int], None]

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
    note_id UNINDEXED,
    title,
    snippet UNINDEXED,
    folder,
    content,
    tokenize='porter unicode61'
);
CREATE TABLE IF NOT EXISTS index_meta (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

_SEARCH_SQL = """\
SELECT note_id, snippet(notes_fts, -1, ?, ?, ?, ?), snippet, rank
FROM notes_fts
WHERE notes_fts MATCH ?
ORDER BY rank
LIMIT ?
"""

_INSERT_SQL = (
    "INSERT INTO notes_fts (note_id, title, snippet, folder, content) VALUES (?, ?, ?, ?, ?)"
)

# FTS5 caps snippet() at 64 tokens
_MAX_SNIPPET_TOKENS = 64
_PREVIEW_CHARS = 200


def build_match_expression(query: str) -> str:
    """Quote every whitespace-separated term and OR them together."""
    terms = [t for t in query.split() if t]
    return " OR ".join('"' + t.replace('"', '""') + '"' for t in terms)


def preview_line(content: str) -> str:
    """First non-blank line of *content*, cut to a display-sized preview."""
    for line in content.splitlines():
        line = line.strip()
        if line:
            return line[:_PREVIEW_CHARS]
    return ""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def describe_age(then: datetime, now: datetime | None = None) -> str:
    """Coarse relative time, e.g. ``3 hours ago``."""
    seconds = int(((now or datetime.now(UTC)) - _as_utc(then)).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, size in (("day", 86_400), ("hour", 3_600), ("minute", 60)):
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now"


_COLUMNS = ("note_id", "title", "snippet", "folder", "content")


def _drop_outdated_table(conn: sqlite3.Connection) -> None:
    """Drop an index written with a different column layout so it is rebuilt."""
    columns = tuple(row[1] for row in conn.execute("PRAGMA table_info(notes_fts)"))
    if columns and columns != _COLUMNS:
        logger.info("Full-text index layout changed; dropping for rebuild")
        conn.execute("DROP TABLE notes_fts")
        conn.execute("DROP TABLE IF EXISTS index_meta")


class FullTextIndex:
    """Persistent FTS5 index with staleness tracking against a note source."""

    def __init__(
        self,
        config: FullTextConfig,
        source: NoteSource,
        *,
        list_limit: int = 100_000,
        source_factory: Callable[[], NoteSource] | None = None,
    ) -> None:
        self.config = config
        self.path: Path = config.index_path
        self._source = source
        self._source_factory = source_factory
        self._list_limit = list_limit

        self._schema_ready = False
        # Held for the whole duration of any rebuild, foreground or background
        self._rebuild_lock = threading.Lock()
        self._rebuild_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a fresh connection. Callers own and close it."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), timeout=30.0, isolation_level=None)
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"Cannot open index at {self.path}: {exc}") from exc

        try:
            if not self._schema_ready:
                conn.execute("PRAGMA journal_mode=WAL")
                _drop_outdated_table(conn)
                conn.executescript(_SCHEMA)
                self._schema_ready = True
        except sqlite3.Error as exc:
            conn.close()
            raise StorageUnavailable(f"Cannot prepare index at {self.path}: {exc}") from exc
        return conn

    def _read_meta(self, key: str) -> str | None:
        with contextlib.closing(self._connect()) as conn:
            try:
                row = conn.execute("SELECT value FROM index_meta WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as exc:
                raise QueryFailed(str(exc)) from exc
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Metadata accessors
    # ------------------------------------------------------------------

    @property
    def last_build_time(self) -> datetime | None:
        value = self._read_meta("last_build")
        if value is None:
            return None
        try:
            return _as_utc(datetime.fromisoformat(value))
        except ValueError:
            logger.warning("Unreadable last_build value %r in %s", value, self.path)
            return None

    @property
    def indexed_count(self) -> int:
        with contextlib.closing(self._connect()) as conn:
            try:
                row = conn.execute("SELECT COUNT(*) FROM notes_fts").fetchone()
            except sqlite3.Error as exc:
                raise QueryFailed(str(exc)) from exc
        return int(row[0]) if row else 0

    @property
    def is_indexed(self) -> bool:
        """True once a build has completed, even if it indexed nothing."""
        return self.last_build_time is not None

    def stale_against(self, latest: datetime | None) -> bool:
        """Whether a store last modified at *latest* is newer than the last build."""
        last_build = self.last_build_time
        if last_build is None:
            return True
        if latest is None:
            return False
        return _as_utc(latest) > last_build

    @property
    def is_stale(self) -> bool:
        if self.last_build_time is None:
            return True
        return self.stale_against(self._source.latest_modification_time())

    @property
    def is_rebuilding(self) -> bool:
        return self._rebuild_lock.locked()

    def staleness_info(self) -> IndexStatus:
        """Status snapshot with a message suitable for display."""
        last_build = self.last_build_time
        stale = self.is_stale
        if last_build is None:
            message = "Index not built. Run a full build first."
        elif stale:
            message = (
                f"Index may be stale (built {describe_age(last_build)}). "
                "Rebuilding in background..."
            )
        else:
            message = "Index is up to date."
        return IndexStatus(
            is_stale=stale,
            last_build=last_build,
            indexed_count=self.indexed_count,
            is_rebuilding=self.is_rebuilding,
            message=message,
        )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        progress: ProgressCallback | None = None,
        source: NoteSource | None = None,
    ) -> int:
        """Full rebuild. Blocks while another rebuild is running.

        Returns the number of notes indexed; notes that cannot be read are
        skipped and not counted.
        """
        with self._rebuild_lock:
            return self._build_locked(progress, source or self._source)

    def _build_locked(self, progress: ProgressCallback | None, source: NoteSource) -> int:
        started = datetime.now(UTC)
        notes = source.list_notes(limit=self._list_limit)
        total = len(notes)
        interval = max(self.config.progress_interval, 1)
        indexed = 0
        logger.info("Full-text build started (%d notes)", total)

        with contextlib.closing(self._connect()) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("DELETE FROM notes_fts")
                for processed, summary in enumerate(notes, start=1):
                    try:
                        body = source.read_content(summary.id)
                        conn.execute(
                            _INSERT_SQL,
                            (
                                summary.id,
                                summary.title,
                                preview_line(body.content),
                                summary.folder or "",
                                body.content,
                            ),
                        )
                        indexed += 1
                    except Exception as exc:
                        logger.warning("Skipping note %s: %s", summary.id, exc)

                    if progress is not None and processed % interval == 0:
                        progress(processed, total)

                conn.execute(
                    "INSERT OR REPLACE INTO index_meta (key, value) VALUES ('last_build', ?)",
                    (started.isoformat(),),
                )
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise QueryFailed(str(exc)) from exc
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

        if progress is not None:
            progress(total, total)
        logger.info("Full-text build complete: %d/%d notes indexed", indexed, total)
        return indexed

    def rebuild_in_background(self) -> bool:
        """Start a rebuild on a worker thread unless one is already running.

        Returns True if a rebuild was started.
        """
        if not self._rebuild_lock.acquire(blocking=False):
            logger.debug("Full-text rebuild already in flight")
            return False
        try:
            thread = threading.Thread(
                target=self._background_build,
                name="fulltext-rebuild",
                daemon=True,
            )
            self._rebuild_thread = thread
            thread.start()
        except BaseException:
            self._rebuild_lock.release()
            raise
        return True

    def _background_build(self) -> None:
        try:
            source = self._source_factory() if self._source_factory else self._source
            self._build_locked(None, source)
        except Exception:
            logger.exception("Background full-text rebuild failed")
        finally:
            self._rebuild_lock.release()

    def wait_for_rebuild(self, timeout: float | None = None) -> bool:
        """Join the background worker. Returns True when no rebuild is running."""
        thread = self._rebuild_thread
        if thread is not None:
            thread.join(timeout)
        return not self.is_rebuilding

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int = 20) -> list[FullTextHit]:
        """Rank notes matching any query term, best first, with a highlighted snippet."""
        match = build_match_expression(query)
        if not match or limit <= 0:
            return []

        tokens = max(1, min(self.config.snippet_tokens, _MAX_SNIPPET_TOKENS))
        params = (
            self.config.highlight_open,
            self.config.highlight_close,
            self.config.ellipsis,
            tokens,
            match,
            limit,
        )
        with contextlib.closing(self._connect()) as conn:
            try:
                rows = conn.execute(_SEARCH_SQL, params).fetchall()
            except sqlite3.Error as exc:
                raise QueryFailed(str(exc)) from exc

        return [
            FullTextHit(note_id=note_id, snippet=snippet or preview or "", score=-float(rank))
            for note_id, snippet, preview, rank in rows
        ]

    def search_with_auto_rebuild(
        self, query: str, limit: int = 20, *, stale: bool | None = None
    ) -> FullTextResponse:
        """Search without ever blocking on a rebuild.

        A never-built index starts a background build and answers empty. A
        stale index answers from the current snapshot and schedules a
        background rebuild for later queries. Callers that already know whether
        the index is stale pass *stale* to skip asking the note source.
        """
        if not self.is_indexed:
            self.rebuild_in_background()
            return FullTextResponse(results=[], was_stale=True, is_rebuilding=True)

        was_stale = self.is_stale if stale is None else stale
        results = self.search(query, limit)
        if was_stale:
            self.rebuild_in_background()
        return FullTextResponse(
            results=results,
            was_stale=was_stale,
            is_rebuilding=self.is_rebuilding,
        )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def delete_index(self) -> None:
        """Remove the index file and its WAL side files."""
        if self.is_rebuilding:
            raise BuildInProgress("Cannot delete the full-text index during a rebuild")
        for suffix in ("", "-wal", "-shm"):
            target = self.path.with_name(self.path.name + suffix)
            target.unlink(missing_ok=True)
        self._schema_ready = False
        logger.info("Deleted full-text index at %s", self.path)
