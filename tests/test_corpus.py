"""Tests for the file system corpus."""

from __future__ import annotations

from pathlib import Path

import pytest

from notesearch.errors import IndexUnavailable
from notesearch.index.corpus import FileSystemCorpus


class TestFileSystemCorpus:
    """Tests for FileSystemCorpus."""

    def test_list_documents(self, notes_dir: Path) -> None:
        corpus = FileSystemCorpus(notes_dir)
        assert corpus.list_documents() == [
            "Meeting Notes.md",
            "journal/2024-01-01.md",
            "projects/cats.md",
            "projects/dogs.md",
            "recipes/Pasta Carbonara.md",
        ]

    def test_list_folder(self, notes_dir: Path) -> None:
        corpus = FileSystemCorpus(notes_dir)
        assert corpus.list_documents("projects") == ["projects/cats.md", "projects/dogs.md"]

    def test_list_missing_folder(self, notes_dir: Path) -> None:
        assert FileSystemCorpus(notes_dir).list_documents("nowhere") == []

    def test_excluded_folders(self, notes_dir: Path) -> None:
        corpus = FileSystemCorpus(notes_dir, excluded_folders=["journal", "recipes"])
        assert "journal/2024-01-01.md" not in corpus.list_documents()
        assert len(corpus.list_documents()) == 3

    def test_read_document(self, notes_dir: Path) -> None:
        corpus = FileSystemCorpus(notes_dir)
        assert corpus.read_document("Meeting Notes.md").startswith("Discussed the roadmap")

    def test_read_missing_document(self, notes_dir: Path) -> None:
        with pytest.raises(FileNotFoundError):
            FileSystemCorpus(notes_dir).read_document("gone.md")

    def test_path_outside_root_rejected(self, notes_dir: Path) -> None:
        with pytest.raises(ValueError, match="escapes"):
            FileSystemCorpus(notes_dir).read_document("../secret.md")

    def test_missing_root(self, tmp_path: Path) -> None:
        corpus = FileSystemCorpus(tmp_path / "missing")
        with pytest.raises(IndexUnavailable):
            corpus.list_documents()

    def test_last_modified(self, notes_dir: Path) -> None:
        corpus = FileSystemCorpus(notes_dir)
        expected = (notes_dir / "projects" / "cats.md").stat().st_mtime
        assert corpus.last_modified("projects/cats.md") == expected
