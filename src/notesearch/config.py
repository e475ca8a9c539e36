"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from notesearch.embedding.encoder import DEFAULT_MODEL


def _get_default_db_path() -> Path:
    """Prefer a local data/ database when running from a checkout."""
    local_db = Path("data/notesearch.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".notesearch" / "notesearch.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    notes_root: Path | None = None
    model_name: str = DEFAULT_MODEL
    proximity_threshold: int = 10
    term_match_threshold: float = 0.7
    results_per_page: int = 10
    max_excerpts: int = 3
    quoted_match_mode: Literal["exact", "relevant"] = "exact"
    excluded_folders: tuple[str, ...] = field(default_factory=tuple)
    llm_cache_max_age_days: int = 30
    llm_cache_max_entries: int = 1000

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.quoted_match_mode not in ("exact", "relevant"):
            raise ValueError(f"Unknown quoted match mode: {self.quoted_match_mode}")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def cache_db_path(self, base_dir: Path | None = None) -> Path:
        """Embedding and LLM caches live next to the index database."""
        index_db = self.resolve_db_path(base_dir)
        return index_db.with_name(f"{index_db.stem}.cache.db")
