"""Tests for configuration."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from notetree.config import NoteTreeConfig


class TestNoteTreeConfig:
    """Environment-driven settings and their validation."""

    def test_defaults(self, monkeypatch):
        for name in ("NOTETREE_RESOLVER_MAX_HOPS", "NOTETREE_BATCH_MAX_OPERATIONS",
                     "NOTETREE_IN_MEMORY_DB", "NOTETREE_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        cfg = NoteTreeConfig()
        assert cfg.resolver_max_hops == 10000
        assert cfg.batch_max_operations == 1000
        assert cfg.in_memory_db is False
        assert cfg.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("NOTETREE_RESOLVER_MAX_HOPS", "50")
        monkeypatch.setenv("NOTETREE_IN_MEMORY_DB", "yes")
        cfg = NoteTreeConfig()
        assert cfg.resolver_max_hops == 50
        assert cfg.in_memory_db is True
        assert cfg.get_db_url() == "sqlite://"

    def test_invalid_limits_rejected(self):
        with pytest.raises(ValidationError):
            NoteTreeConfig(resolver_max_hops=0)
        with pytest.raises(ValidationError):
            NoteTreeConfig(batch_max_retries=-1)
        with pytest.raises(ValidationError):
            NoteTreeConfig(log_level="LOUD")

    def test_assignment_is_validated(self):
        cfg = NoteTreeConfig()
        with pytest.raises(ValidationError):
            cfg.batch_max_operations = 0

    def test_db_url_creates_parent_dir(self, tmp_path):
        cfg = NoteTreeConfig(
            base_dir=tmp_path, database_path=Path("nested/dir/store.db"), in_memory_db=False
        )
        url = cfg.get_db_url()
        assert url == f"sqlite:///{tmp_path / 'nested/dir/store.db'}"
        assert (tmp_path / "nested" / "dir").is_dir()

    def test_absolute_path_untouched(self, tmp_path):
        cfg = NoteTreeConfig(base_dir=Path("/elsewhere"))
        assert cfg.get_absolute_path(tmp_path) == tmp_path
