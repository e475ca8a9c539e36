"""Markdown note parsing: frontmatter, tags and properties."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Tuple

import yaml

from notesearch.utils.files import file_category

LOGGER = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_INLINE_TAG_RE = re.compile(r"(?<![\w#&/])#([^\s#.,;:!?()\[\]{}\"'`]+)")
_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)


@dataclass(slots=True)
class NoteRecord:
    """A parsed note, ready to be indexed."""

    path: str
    file_name: str
    folder: str
    body: str
    tags: List[str] = field(default_factory=list)
    properties: List[Tuple[str, str]] = field(default_factory=list)
    token_count: int = 0


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split YAML frontmatter from the note body.

    Frontmatter that does not parse to a mapping is treated as absent.
    """
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        LOGGER.warning("Ignoring invalid frontmatter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end():]


def _as_strings(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        items: List[str] = []
        for item in value:
            items.extend(_as_strings(item))
        return items
    if isinstance(value, bool):
        return [str(value).lower()]
    return [str(value)]


def _frontmatter_tags(value: Any) -> List[str]:
    tags: List[str] = []
    for item in _as_strings(value):
        tags.extend(part.lstrip("#") for part in re.split(r"[,\s]+", item) if part.strip("#"))
    return tags


def extract_inline_tags(body: str) -> List[str]:
    """Inline ``#tags`` (including nested ``#a/b``), ignoring fenced code."""
    body = _FENCED_CODE_RE.sub(" ", body)
    return [tag.rstrip("/") for tag in _INLINE_TAG_RE.findall(body) if not tag.isdigit()]


def load_note(path: str, text: str) -> NoteRecord:
    """Parse a note stored at the posix-style relative ``path``."""
    posix = PurePosixPath(path)
    frontmatter, body = split_frontmatter(text)

    tags = list(dict.fromkeys(_frontmatter_tags(frontmatter.get("tags")) + extract_inline_tags(body)))

    properties: List[Tuple[str, str]] = [("tag", tag) for tag in tags]
    for key, value in frontmatter.items():
        name = str(key).strip().lower()
        if not name or name == "tags":
            continue
        properties.extend((name, item) for item in _as_strings(value))
    extension = posix.suffix.lstrip(".").lower()
    properties.append(("file_type", extension))
    properties.append(("file_category", file_category(extension)))

    parent = str(posix.parent)
    return NoteRecord(
        path=str(posix),
        file_name=posix.stem,
        folder="" if parent == "." else parent,
        body=body,
        tags=tags,
        properties=properties,
        token_count=len(text.split()),
    )
