"""Tests for project discovery, config.json, schema versioning, and port resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from tasklane.core import (
    CONFIG_FILENAME,
    DB_FILENAME,
    TASKLANE_DIR_NAME,
    TasklaneDB,
    find_tasklane_root,
    read_config,
    write_config,
)
from tasklane.dashboard import DEFAULT_PORT, resolve_port
from tasklane.db_schema import CURRENT_SCHEMA_VERSION
from tests._db_factory import make_db


class TestDiscovery:
    def test_finds_dir_from_subdirectory(self, tmp_path: Path) -> None:
        (tmp_path / TASKLANE_DIR_NAME).mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_tasklane_root(nested) == (tmp_path / TASKLANE_DIR_NAME).resolve()

    def test_missing_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            find_tasklane_root(tmp_path)

    def test_from_project_uses_config_prefix(self, tmp_path: Path) -> None:
        make_db(tmp_path, prefix="acme", with_config=True).close()
        with TasklaneDB.from_project(tmp_path) as db:
            assert db.prefix == "acme"
            assert db.create_project("X")["id"].startswith("acme-prj-")


class TestConfig:
    def test_round_trip(self, tmp_path: Path) -> None:
        write_config(tmp_path, {"prefix": "abc", "version": 1, "project_id": "abc-prj-1"})
        assert read_config(tmp_path)["project_id"] == "abc-prj-1"

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert read_config(tmp_path) == {"prefix": "tl", "version": 1}

    def test_corrupt_file_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("{not json")
        assert read_config(tmp_path)["prefix"] == "tl"


class TestSchema:
    def test_fresh_db_is_stamped(self, db: TasklaneDB) -> None:
        assert db.get_schema_version() == CURRENT_SCHEMA_VERSION

    def test_initialize_is_idempotent(self, db: TasklaneDB) -> None:
        pid = db.create_project("Keep")["id"]
        db.initialize()
        assert db.get_project(pid)["name"] == "Keep"

    def test_newer_schema_refused(self, tmp_path: Path) -> None:
        d = TasklaneDB(tmp_path / DB_FILENAME)
        d.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION + 1}")
        with pytest.raises(ValueError, match="newer than this tasklane supports"):
            d.initialize()
        d.close()

    def test_close_clears_cache(self, db: TasklaneDB) -> None:
        pid = db.create_project("P")["id"]
        db.load_workflows(pid)
        db.close()
        assert db._workflow_cache == {}


class TestResolvePort:
    def test_explicit_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TASKLANE_PORT", "9001")
        assert resolve_port(9100) == 9100

    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TASKLANE_PORT", "9001")
        assert resolve_port() == 9001

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TASKLANE_PORT", raising=False)
        assert resolve_port() == DEFAULT_PORT

    def test_invalid_env_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TASKLANE_PORT", "eighty")
        assert resolve_port() == DEFAULT_PORT
