"""Indexes — exact title matching, SQLite full-text search, and in-memory semantic search."""

from notesearch.index.embedder import Encoder, TextEmbedder, cosine_similarity
from notesearch.index.embedding_cache import EmbeddingCache
from notesearch.index.exact import ExactMatcher
from notesearch.index.fulltext import FullTextIndex
from notesearch.index.semantic import SemanticIndex

__all__ = [
    "EmbeddingCache",
    "Encoder",
    "ExactMatcher",
    "FullTextIndex",
    "SemanticIndex",
    "TextEmbedder",
    "cosine_similarity",
]
