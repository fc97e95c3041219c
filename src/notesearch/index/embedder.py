"""Text embedder — encodes text through an OpenAI-compatible embeddings API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from openai import OpenAI, OpenAIError

from notesearch.errors import EncodingFailed, ModelNotInitialized
from notesearch.index.embedding_cache import content_hash

if TYPE_CHECKING:
    from collections.abc import Sequence

    from notesearch.config import EmbeddingConfig
    from notesearch.index.embedding_cache import EmbeddingCache

logger = logging.getLogger(__name__)

VOYAGE_BASE_URL = "https://api.voyageai.com/v1"


class Encoder(Protocol):
    """Anything that turns text into a fixed-width vector."""

    def encode(self, text: str) -> list[float]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 for zero-norm or mismatched vectors."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size == 0 or va.size != vb.size:
        return 0.0
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_scores(query: np.ndarray, matrix: np.ndarray, norms: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against every row of *matrix*.

    *norms* holds the precomputed row norms. Zero-norm rows score 0.0, and
    so does every row when the query is zero or of the wrong width.
    """
    scores = np.zeros(matrix.shape[0], dtype=np.float32)
    if matrix.size == 0 or query.shape != (matrix.shape[1],):
        return scores
    q_norm = float(np.linalg.norm(query))
    if q_norm == 0.0:
        return scores
    denom = norms * q_norm
    np.divide(matrix @ query, denom, out=scores, where=denom > 0)
    return scores


class TextEmbedder:
    """Stateless wrapper around a fixed embedding model.

    Supports OpenAI (text-embedding-3-small/large) and Voyage (voyage-3-lite)
    via the OpenAI-compatible API format. Optionally backed by an SQLite
    embedding cache, which also makes repeated encodes of the same text
    return the same vector.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        api_key: str,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.config = config
        self._cache = cache
        base_url = VOYAGE_BASE_URL if config.provider == "voyage" else None
        try:
            self._client = OpenAI(api_key=api_key or None, base_url=base_url)
        except OpenAIError as exc:
            raise ModelNotInitialized(f"Embedding client unavailable: {exc}") from exc

    def encode(self, text: str) -> list[float]:
        """Embed a single text. Raises EncodingFailed on any API failure."""
        return self.encode_batch([text])[0]

    def encode_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts, using cache when available."""
        if not texts:
            return []

        if self._cache is None:
            return self._encode_uncached(texts)

        provider = self.config.provider
        model = self.config.model
        hashes = [content_hash(t) for t in texts]
        cached = self._cache.get_batch(hashes, provider, model)

        uncached_indices = [i for i, h in enumerate(hashes) if h not in cached]
        if uncached_indices:
            fresh = self._encode_uncached([texts[i] for i in uncached_indices])
            entries: list[tuple[str, int, list[float]]] = []
            for idx, emb in zip(uncached_indices, fresh, strict=True):
                cached[hashes[idx]] = emb
                entries.append((hashes[idx], len(emb), emb))
            self._cache.put_batch(entries, provider, model)

        return [cached[h] for h in hashes]

    def _encode_uncached(self, texts: list[str]) -> list[list[float]]:
        """Embed texts via API without cache, handling batching internally."""
        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), self.config.batch_size):
            batch = texts[i : i + self.config.batch_size]
            try:
                response = self._client.embeddings.create(model=self.config.model, input=batch)
            except OpenAIError as exc:
                raise EncodingFailed(str(exc)) from exc
            all_embeddings.extend(item.embedding for item in response.data)
            logger.debug(
                "Embedded batch %d-%d of %d",
                i,
                min(i + self.config.batch_size, len(texts)),
                len(texts),
            )

        return all_embeddings
