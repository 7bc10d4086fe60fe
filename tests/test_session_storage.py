"""Tests for SQLite session metadata storage."""

from pathlib import Path

import pytest

from textual_acp.session_storage import SessionRecord, SessionStorage, find_project_root


@pytest.fixture
def storage(tmp_path: Path) -> SessionStorage:
    return SessionStorage(db_path=tmp_path / "sessions.db", project="/project")


class TestSessionStorage:
    """Tests for save/load/delete."""

    def test_save_and_load(self, storage: SessionStorage) -> None:
        storage.save(SessionRecord("session-1-1", 1.0, "first", "active"))
        storage.save(SessionRecord("session-2-2", 2.0, "second"))

        records = storage.load_all()

        assert [r.id for r in records] == ["session-2-2", "session-1-1"]
        assert records[1].status == "active"

    def test_save_updates_existing(self, storage: SessionStorage) -> None:
        storage.save(SessionRecord("session-1-1", 1.0, "first"))
        storage.save(SessionRecord("session-1-1", 1.0, "renamed", "error"))

        [record] = storage.load_all()

        assert record.display_name == "renamed"
        assert record.status == "error"

    def test_projects_are_isolated(self, tmp_path: Path) -> None:
        db_path = tmp_path / "sessions.db"
        SessionStorage(db_path=db_path, project="/a").save(SessionRecord("session-1-1", 1.0, "a"))
        assert SessionStorage(db_path=db_path, project="/b").load_all() == []

    def test_delete(self, storage: SessionStorage) -> None:
        storage.save(SessionRecord("session-1-1", 1.0, "first"))
        assert storage.delete("session-1-1") is True
        assert storage.delete("session-1-1") is False

    def test_clear_all(self, storage: SessionStorage) -> None:
        storage.save(SessionRecord("session-1-1", 1.0, "first"))
        storage.save(SessionRecord("session-2-2", 2.0, "second"))
        assert storage.clear_all() == 2
        assert storage.load_all() == []


def test_project_root_outside_git(tmp_path: Path) -> None:
    """Outside a repository the directory itself keys the sessions."""
    assert find_project_root(str(tmp_path)) == str(tmp_path.resolve())
