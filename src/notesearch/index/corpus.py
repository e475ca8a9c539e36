"""Corpus collaborator: where notes come from."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Literal, Protocol, Sequence

from notesearch.errors import IndexUnavailable
from notesearch.utils.files import iter_note_paths

LOGGER = logging.getLogger(__name__)

EventKind = Literal["created", "modified", "deleted"]


@dataclass(frozen=True, slots=True)
class CorpusEvent:
    kind: EventKind
    path: str


class Corpus(Protocol):
    def list_documents(self, folder: str = "") -> List[str]:
        ...

    def read_document(self, path: str) -> str:
        ...

    def last_modified(self, path: str) -> float:
        ...


class FileSystemCorpus:
    """Markdown notes under a root directory, addressed by posix relative paths."""

    def __init__(self, root: Path, *, excluded_folders: Sequence[str] = ()) -> None:
        self.root = Path(root).expanduser()
        self.excluded_folders = tuple(excluded_folders)

    def _check_root(self) -> Path:
        if not self.root.is_dir():
            raise IndexUnavailable(f"Notes folder not found: {self.root}")
        return self.root

    def _resolve(self, path: str) -> Path:
        root = self._check_root().resolve()
        target = (root / PurePosixPath(path)).resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Path escapes the notes folder: {path}")
        return target

    def list_documents(self, folder: str = "") -> List[str]:
        base = self._resolve(folder) if folder else self._check_root()
        if not base.is_dir():
            return []
        root = self.root.resolve()
        return [
            path.resolve().relative_to(root).as_posix()
            for path in iter_note_paths([base], excluded=self.excluded_folders)
        ]

    def read_document(self, path: str) -> str:
        target = self._resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise IndexUnavailable(f"Cannot read {path}: {exc}") from exc

    def last_modified(self, path: str) -> float:
        return self._resolve(path).stat().st_mtime
