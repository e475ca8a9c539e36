"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from notesearch.config import AppConfig, _get_default_db_path
from notesearch.embedding.encoder import DEFAULT_MODEL


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self) -> None:
        """Should create config with default values."""
        config = AppConfig()

        assert config.db_path is not None
        assert config.notes_root is None
        assert config.model_name == DEFAULT_MODEL
        assert config.proximity_threshold == 10
        assert config.term_match_threshold == 0.7
        assert config.results_per_page == 10
        assert config.max_excerpts == 3
        assert config.quoted_match_mode == "exact"
        assert config.excluded_folders == ()
        assert config.llm_cache_max_age_days == 30
        assert config.llm_cache_max_entries == 1000

    def test_custom_config(self) -> None:
        """Should create config with custom values."""
        config = AppConfig(
            db_path=Path("/custom/path.db"),
            notes_root=Path("/vault"),
            quoted_match_mode="relevant",
            excluded_folders=("templates",),
        )

        assert config.db_path == Path("/custom/path.db")
        assert config.notes_root == Path("/vault")
        assert config.quoted_match_mode == "relevant"
        assert config.excluded_folders == ("templates",)

    def test_invalid_match_mode(self) -> None:
        with pytest.raises(ValueError, match="quoted match mode"):
            AppConfig(quoted_match_mode="fuzzy")  # type: ignore[arg-type]

    def test_resolve_db_path_absolute(self) -> None:
        """Should return absolute path as-is."""
        config = AppConfig(db_path=Path("/absolute/path/db.db"))

        assert config.resolve_db_path(Path("/elsewhere")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        """Should return relative path when no base_dir provided."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_db_path_relative_with_base(self) -> None:
        """Should resolve relative path against base_dir."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(Path("/base")) == Path("/base/relative/db.db")

    def test_cache_db_path(self) -> None:
        """Caches live next to the index database."""
        config = AppConfig(db_path=Path("/data/notes.db"))

        assert config.cache_db_path() == Path("/data/notes.cache.db")


class TestDefaultDbPath:
    """Tests for the default database location."""

    def test_prefers_local_data_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "notesearch.db").touch()

        assert _get_default_db_path() == Path("data/notesearch.db")

    def test_falls_back_to_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        assert _get_default_db_path() == tmp_path / "home" / ".notesearch" / "notesearch.db"
