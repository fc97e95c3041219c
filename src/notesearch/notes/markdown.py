"""Markdown note source — lists and reads ``.md`` files under a folder."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import frontmatter

from notesearch.errors import NotFound, NoteStoreUnavailable, PathTraversalError
from notesearch.models import NoteBody, NoteSummary

if TYPE_CHECKING:
    from notesearch.config import NotesConfig

logger = logging.getLogger(__name__)


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)


class MarkdownNoteSource:
    """Treats a folder of markdown files as a read-only note store.

    Note ids are POSIX paths relative to the root. The title comes from the
    ``title`` frontmatter key, falling back to the file stem. Files inside
    an excluded folder are not notes, and ids that resolve outside the root
    are never read.
    """

    def __init__(self, config: NotesConfig) -> None:
        self.config = config
        self.root = config.path

    def _excluded(self, rel: Path) -> bool:
        return any(part in self.config.excluded_folders for part in rel.parts)

    def _path_for(self, note_id: str) -> Path:
        """Path of *note_id* under the root; raises PathTraversalError if it escapes."""
        root = self.root.resolve()
        candidate = (root / note_id).resolve()
        if not candidate.is_relative_to(root):
            raise PathTraversalError(note_id, self.root)
        return self.root / candidate.relative_to(root)

    def note_id_for(self, path: str | Path) -> str | None:
        """Note id for a file path, or None when the file is not a note.

        Works for paths that no longer exist, so deletions can be mapped too.
        """
        candidate = Path(path)
        if candidate.suffix != ".md":
            return None
        try:
            rel = candidate.relative_to(self.root)
        except ValueError:
            try:
                rel = candidate.resolve().relative_to(self.root.resolve())
            except ValueError:
                return None
        if not rel.parts or ".." in rel.parts or self._excluded(rel):
            return None
        return rel.as_posix()

    def _iter_files(self) -> list[Path]:
        if not self.root.is_dir():
            raise NoteStoreUnavailable(f"Note folder does not exist: {self.root}")
        files: list[Path] = []
        for md_file in self.root.rglob("*.md"):
            if self._excluded(md_file.relative_to(self.root)):
                continue
            files.append(md_file)
        return files

    def _summary(self, path: Path, post: frontmatter.Post | None = None) -> NoteSummary:
        rel = path.relative_to(self.root)
        if post is None:
            post = frontmatter.load(str(path))
        title = post.metadata.get("title") or path.stem.replace("-", " ").replace("_", " ")
        folder = rel.parent.as_posix() if rel.parent.parts else None
        return NoteSummary(
            id=rel.as_posix(),
            title=str(title),
            folder=folder,
            modified_at=_mtime(path),
        )

    def list_notes(self, folder: str | None = None, limit: int = 100_000) -> list[NoteSummary]:
        notes: list[NoteSummary] = []
        for md_file in sorted(self._iter_files()):
            if len(notes) >= limit:
                break
            try:
                summary = self._summary(md_file)
            except Exception:
                logger.exception("Failed to parse %s", md_file)
                continue
            if folder is not None and summary.folder != folder:
                continue
            notes.append(summary)
        logger.debug("Listed %d notes from %s", len(notes), self.root)
        return notes

    def read_content(self, note_id: str) -> NoteBody:
        try:
            path = self._path_for(note_id)
        except PathTraversalError as exc:
            raise NotFound(note_id) from exc
        rel = path.relative_to(self.root)
        if path.suffix != ".md" or self._excluded(rel) or not path.is_file():
            raise NotFound(note_id)

        post = frontmatter.load(str(path))
        summary = self._summary(path, post)
        return NoteBody(
            id=summary.id,
            title=summary.title,
            folder=summary.folder,
            modified_at=summary.modified_at,
            content=post.content,
        )

    def latest_modification_time(self) -> datetime | None:
        """Newest mtime among notes and folders; folders catch deletions."""
        if not self.root.is_dir():
            raise NoteStoreUnavailable(f"Note folder does not exist: {self.root}")
        latest: datetime | None = None
        for path in [self.root, *self.root.rglob("*")]:
            if self._excluded(path.relative_to(self.root)):
                continue
            if path.is_file() and path.suffix != ".md":
                continue
            mtime = _mtime(path)
            if latest is None or mtime > latest:
                latest = mtime
        return latest
