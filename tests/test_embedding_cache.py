"""Tests for EmbeddingCache — SQLite-backed embedding vector cache."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

from notesearch.index.embedding_cache import (
    EmbeddingCache,
    _blob_to_embedding,
    _embedding_to_blob,
    content_hash,
)


@pytest.fixture
def cache(tmp_path: Path) -> EmbeddingCache:
    return EmbeddingCache(tmp_path / "cache.db")


PROVIDER = "openai"
MODEL = "text-embedding-3-small"
DIMS = 4
SAMPLE_EMBEDDING = [0.1, 0.2, 0.3, 0.4]


def _put(cache: EmbeddingCache, text: str, embedding: list[float], model: str = MODEL) -> str:
    h = content_hash(text)
    cache.put_batch([(h, len(embedding), embedding)], PROVIDER, model)
    return h


class TestContentHash:
    def test_deterministic(self) -> None:
        assert content_hash("hello") == content_hash("hello")

    def test_different_input_different_hash(self) -> None:
        assert content_hash("hello") != content_hash("world")

    def test_sha256_length(self) -> None:
        assert len(content_hash("test")) == 64


class TestBlobSerialization:
    def test_blob_is_float32(self) -> None:
        original = [1.0, 2.5, -3.7, 0.0]
        recovered = _blob_to_embedding(_embedding_to_blob(original))
        assert recovered == pytest.approx(original, abs=1e-6)

    def test_blob_size(self) -> None:
        assert len(_embedding_to_blob([0.0] * 1536)) == 1536 * 4


class TestBatchOperations:
    def test_get_batch_mixed(self, cache: EmbeddingCache) -> None:
        h1 = _put(cache, "text1", [1.0, 0.0, 0.0, 0.0])
        h2 = content_hash("text2")
        h3 = _put(cache, "text3", [0.0, 0.0, 0.0, 1.0])

        result = cache.get_batch([h1, h2, h3], PROVIDER, MODEL)
        assert set(result) == {h1, h3}
        assert result[h3] == pytest.approx([0.0, 0.0, 0.0, 1.0])

    def test_get_batch_empty(self, cache: EmbeddingCache) -> None:
        assert cache.get_batch([], PROVIDER, MODEL) == {}

    def test_model_isolation(self, cache: EmbeddingCache) -> None:
        h = _put(cache, "same content", SAMPLE_EMBEDDING, model="model-a")
        assert cache.get_batch([h], PROVIDER, "model-b") == {}
        assert h in cache.get_batch([h], PROVIDER, "model-a")

    def test_provider_isolation(self, cache: EmbeddingCache) -> None:
        h = _put(cache, "same content", SAMPLE_EMBEDDING)
        assert cache.get_batch([h], "voyage", MODEL) == {}

    def test_overwrite(self, cache: EmbeddingCache) -> None:
        h = _put(cache, "text", [1.0, 2.0, 3.0, 4.0])
        _put(cache, "text", [5.0, 6.0, 7.0, 8.0])
        assert cache.get_batch([h], PROVIDER, MODEL)[h][0] == pytest.approx(5.0)

    def test_put_batch_empty(self, cache: EmbeddingCache) -> None:
        cache.put_batch([], PROVIDER, MODEL)
        assert cache.stats()["total_entries"] == 0

    def test_concurrent_writers(self, cache: EmbeddingCache) -> None:
        def writer(prefix: str) -> None:
            for i in range(20):
                _put(cache, f"{prefix}-{i}", SAMPLE_EMBEDDING)

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.stats()["total_entries"] == 80


class TestStats:
    def test_empty_cache(self, cache: EmbeddingCache) -> None:
        assert cache.stats() == {"total_entries": 0, "total_size_bytes": 0}

    def test_after_inserts(self, cache: EmbeddingCache) -> None:
        _put(cache, "a", SAMPLE_EMBEDDING)
        _put(cache, "b", SAMPLE_EMBEDDING)
        s = cache.stats()
        assert s["total_entries"] == 2
        assert s["total_size_bytes"] == DIMS * 4 * 2  # 4 bytes per float32


class TestWALMode:
    def test_wal_enabled(self, cache: EmbeddingCache) -> None:
        row = cache._conn.execute("PRAGMA journal_mode").fetchone()
        assert row is not None
        assert row[0] == "wal"


class TestClose:
    def test_reopen_keeps_entries(self, tmp_path: Path) -> None:
        cache = EmbeddingCache(tmp_path / "nested" / "close_test.db")
        h = _put(cache, "x", SAMPLE_EMBEDDING)
        cache.close()

        cache2 = EmbeddingCache(tmp_path / "nested" / "close_test.db")
        assert h in cache2.get_batch([h], PROVIDER, MODEL)
        cache2.close()
