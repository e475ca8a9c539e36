"""Tests for file utility functions."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from notesearch.utils.files import file_category, iter_note_paths, sha256_text


class TestIterNotePaths:
    """Test iter_note_paths function."""

    def test_single_note_file(self, tmp_path: Path) -> None:
        """Should yield a single markdown file."""
        note = tmp_path / "note.md"
        note.write_text("hello")

        assert list(iter_note_paths([note])) == [note]

    def test_directory_with_notes(self, tmp_path: Path) -> None:
        """Should find markdown files and ignore everything else."""
        (tmp_path / "a.md").write_text("a")
        (tmp_path / "b.markdown").write_text("b")
        (tmp_path / "image.png").write_text("png")

        names = {path.name for path in iter_note_paths([tmp_path])}

        assert names == {"a.md", "b.markdown"}

    def test_nested_directories(self, tmp_path: Path) -> None:
        """Should descend into subdirectories."""
        subdir = tmp_path / "sub"
        subdir.mkdir()
        (tmp_path / "root.md").write_text("root")
        (subdir / "nested.md").write_text("nested")

        names = {path.name for path in iter_note_paths([tmp_path])}

        assert names == {"root.md", "nested.md"}

    def test_hidden_and_excluded_directories(self, tmp_path: Path) -> None:
        """Dot directories and excluded names are skipped at any depth."""
        for folder in (".obsidian", "templates", "keep/templates", "keep"):
            (tmp_path / folder).mkdir(parents=True, exist_ok=True)
            (tmp_path / folder / "note.md").write_text("x")

        paths = list(iter_note_paths([tmp_path], excluded=["templates"]))

        assert paths == [tmp_path / "keep" / "note.md"]

    def test_uppercase_extension(self, tmp_path: Path) -> None:
        (tmp_path / "NOTE.MD").write_text("x")
        assert len(list(iter_note_paths([tmp_path]))) == 1

    def test_nonexistent_path(self, tmp_path: Path) -> None:
        assert list(iter_note_paths([tmp_path / "missing"])) == []


class TestFileCategory:
    """Test file_category function."""

    @pytest.mark.parametrize(
        ("extension", "category"),
        [("md", "document"), (".PNG", "image"), ("mp3", "audio"), ("csv", "data"), ("py", "code"), ("xyz", "document")],
    )
    def test_categories(self, extension: str, category: str) -> None:
        assert file_category(extension) == category


class TestHashing:
    """Test content hashing helpers."""

    def test_sha256_text(self) -> None:
        assert sha256_text("hello world") == hashlib.sha256(b"hello world").hexdigest()

    def test_sha256_text_utf8(self) -> None:
        assert sha256_text("héllo") == hashlib.sha256("héllo".encode("utf-8")).hexdigest()
        assert sha256_text("héllo") != sha256_text("hello")
