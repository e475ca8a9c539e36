"""Utility helpers for working with note files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable, Iterator

NOTE_SUFFIXES = (".md", ".markdown")

_CATEGORIES = {
    "document": {"md", "markdown", "txt", "pdf", "doc", "docx", "odt", "rtf"},
    "image": {"png", "jpg", "jpeg", "gif", "bmp", "svg", "webp"},
    "audio": {"mp3", "wav", "m4a", "ogg", "flac"},
    "video": {"mp4", "mov", "webm", "mkv", "avi"},
    "data": {"json", "csv", "yaml", "yml", "xml", "canvas"},
    "code": {"py", "js", "ts", "java", "go", "rs", "c", "cpp", "sh", "css", "html"},
}


def iter_note_paths(inputs: Iterable[Path], *, excluded: Iterable[str] = ()) -> Iterator[Path]:
    """Yield markdown note paths, descending into directories.

    Directories whose name is in ``excluded`` or starts with a dot are skipped.
    """
    skip = set(excluded)
    for item in inputs:
        if item.is_dir():
            for child in sorted(item.rglob("*")):
                relative = child.relative_to(item)
                if any(part in skip or part.startswith(".") for part in relative.parts[:-1]):
                    continue
                if child.is_file() and child.suffix.lower() in NOTE_SUFFIXES:
                    yield child
        elif item.is_file() and item.suffix.lower() in NOTE_SUFFIXES:
            yield item


def file_category(extension: str) -> str:
    extension = extension.lstrip(".").lower()
    for category, extensions in _CATEGORIES.items():
        if extension in extensions:
            return category
    return "document"


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
