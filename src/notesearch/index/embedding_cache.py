"""SQLite-backed embedding cache — identical text always maps to the same stored vector."""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import struct
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS embedding_cache (
    content_hash TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    dimensions INTEGER NOT NULL,
    embedding BLOB NOT NULL,
    created_at REAL NOT NULL,
    PRIMARY KEY (content_hash, provider, model)
);
"""


def content_hash(text: str) -> str:
    """SHA-256 hex digest of text content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _embedding_to_blob(embedding: list[float]) -> bytes:
    """Pack a float list into a compact binary blob (little-endian float32)."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def _blob_to_embedding(blob: bytes) -> list[float]:
    """Unpack a binary blob back into a float list."""
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob))


class EmbeddingCache:
    """SQLite-backed cache for embedding vectors.

    Keyed by (content_hash, provider, model) so provider/model switches
    produce cache misses. The semantic index encodes from worker threads,
    so the single connection is opened without the same-thread check and
    every statement runs under a lock.
    """

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_SCHEMA)
        self._conn.commit()
        logger.info("Embedding cache opened at %s", db_path)

    def get_batch(
        self, content_hashes: list[str], provider: str, model: str
    ) -> dict[str, list[float]]:
        """Retrieve multiple cached embeddings. Returns dict mapping hash -> embedding."""
        if not content_hashes:
            return {}

        placeholders = ",".join("?" for _ in content_hashes)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT content_hash, embedding FROM embedding_cache "  # noqa: S608
                f"WHERE provider = ? AND model = ? AND content_hash IN ({placeholders})",
                [provider, model, *content_hashes],
            ).fetchall()
        return {row[0]: _blob_to_embedding(row[1]) for row in rows}

    def put_batch(
        self,
        entries: list[tuple[str, int, list[float]]],
        provider: str,
        model: str,
    ) -> None:
        """Store multiple embeddings. Each entry is (content_hash, dimensions, embedding)."""
        if not entries:
            return
        now = time.time()
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO embedding_cache "
                "(content_hash, provider, model, dimensions, embedding, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (h, provider, model, dims, _embedding_to_blob(emb), now)
                    for h, dims, emb in entries
                ],
            )
            self._conn.commit()

    def stats(self) -> dict[str, int]:
        """Return cache statistics: total_entries and total_size_bytes."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(LENGTH(embedding)), 0) FROM embedding_cache"
            ).fetchone()
        assert row is not None
        return {"total_entries": row[0], "total_size_bytes": row[1]}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
