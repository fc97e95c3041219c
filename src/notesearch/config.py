"""Configuration management for notesearch.

Loads from environment variables, .env files, and config/default.toml.
All secrets come from env vars; structural config from TOML.

Default base directory: ~/.notesearch/
  notes/                   — markdown note folder (or symlink to an existing one)
  cache/search_index.db    — full-text index
  cache/embedding_cache.db — embedding vectors keyed by content hash
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

NOTESEARCH_HOME = Path.home() / ".notesearch"


class NotesConfig(BaseModel):
    """Markdown note folder configuration."""

    path: Path = Field(
        default_factory=lambda: NOTESEARCH_HOME / "notes",
        description="Root folder of the markdown notes",
    )
    excluded_folders: list[str] = Field(default_factory=lambda: [".obsidian", ".git", ".trash"])
    list_limit: int = 100_000

    @field_validator("path")
    @classmethod
    def expand_notes_path(cls, v: Path) -> Path:
        return v.expanduser()


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""

    provider: Literal["openai", "voyage"] = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64
    cache_enabled: bool = True


class FullTextConfig(BaseModel):
    """SQLite FTS5 index configuration."""

    cache_dir: Path = Field(default_factory=lambda: NOTESEARCH_HOME / "cache")
    filename: str = "search_index.db"
    snippet_tokens: int = 20
    highlight_open: str = "**"
    highlight_close: str = "**"
    ellipsis: str = "..."
    progress_interval: int = 50

    @field_validator("cache_dir")
    @classmethod
    def expand_cache_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def index_path(self) -> Path:
        return self.cache_dir / self.filename


class SearchConfig(BaseModel):
    """Merged search configuration."""

    default_limit: int = 20
    semantic_limit: int = 10
    source_timeout_seconds: float = 2.0
    debounce_ms: int = 300


class WatchConfig(BaseModel):
    """Note folder watch mode configuration."""

    debounce_ms: int = 500


class Settings(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="NOTESEARCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    notes: NotesConfig = Field(default_factory=NotesConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    fulltext: FullTextConfig = Field(default_factory=FullTextConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    # API keys — always from env vars
    openai_api_key: str = ""
    voyage_api_key: str = ""

    @property
    def embedding_api_key(self) -> str:
        """Resolve the API key for the configured embedding provider."""
        keys = {
            "openai": self.openai_api_key,
            "voyage": self.voyage_api_key,
        }
        return keys.get(self.embedding.provider, "")

    @property
    def embedding_cache_path(self) -> Path:
        return self.fulltext.cache_dir / "embedding_cache.db"

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from TOML file, with env var overrides."""
        config_path = path or Path("config/default.toml")
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls(**data)
        return cls()


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)
