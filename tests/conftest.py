"""Shared fixtures for NoteSearch tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List

import pytest

from notesearch.index.indexer import Indexer
from notesearch.index.storage import SQLiteSearchStore


SAMPLE_NOTES: Dict[str, str] = {
    "projects/cats.md": (
        "---\ntags: [animals]\nstatus: done\n---\n"
        "The black cat sleeps on the mat. Cats love sleeping.\n"
    ),
    "projects/dogs.md": "Dogs bark loudly. #animals/pets\nA dog is a loyal friend.\n",
    "journal/2024-01-01.md": "Walked the dog in the park. Saw a black cat.\n",
    "recipes/Pasta Carbonara.md": "Boil pasta. Add eggs and cheese. #cooking\n",
    "Meeting Notes.md": "Discussed the roadmap with the team.\n",
}


class MemoryCorpus:
    """In-memory corpus keyed by posix relative path."""

    def __init__(self, notes: Dict[str, str]) -> None:
        self.notes = dict(notes)
        self.mtimes = {path: 1.0 for path in notes}

    def list_documents(self, folder: str = "") -> List[str]:
        prefix = folder.rstrip("/") + "/" if folder else ""
        return sorted(path for path in self.notes if path.startswith(prefix))

    def read_document(self, path: str) -> str:
        try:
            return self.notes[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    def last_modified(self, path: str) -> float:
        return self.mtimes[path]

    def write(self, path: str, text: str, mtime: float) -> None:
        self.notes[path] = text
        self.mtimes[path] = mtime

    def remove(self, path: str) -> None:
        del self.notes[path]
        del self.mtimes[path]


def write_notes(root: Path, notes: Dict[str, str]) -> None:
    for relative, text in notes.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")


@pytest.fixture
def corpus() -> MemoryCorpus:
    return MemoryCorpus(SAMPLE_NOTES)


@pytest.fixture
def store(tmp_path: Path):
    """Empty search store in a temporary database."""
    store = SQLiteSearchStore(tmp_path / "index.db")
    yield store
    store.close()


@pytest.fixture
def indexed_store(store: SQLiteSearchStore, corpus: MemoryCorpus) -> SQLiteSearchStore:
    """Store holding every sample note."""
    asyncio.run(Indexer(store, corpus).index_folder())
    return store


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    """Sample notes written to disk."""
    root = tmp_path / "notes"
    write_notes(root, SAMPLE_NOTES)
    return root
