"""Tests for JsonProjectStore."""

from __future__ import annotations

import json

import pytest

from conftest import make_state
from dispatch.core.errors import ProjectNotFound
from dispatch.core.state import ProjectStatus, TaskRecord
from dispatch.core.store import JsonProjectStore


@pytest.fixture
def store(tmp_path):
    return JsonProjectStore(tmp_path / "data")


class TestRoundTrip:
    def test_create_and_load(self, store):
        state = make_state()
        state.record_completion(TaskRecord(task="Scaffold", commit_hash="abc"))
        store.create(state)

        loaded = store.load("demo")
        assert loaded.name == "Demo"
        assert loaded.completed[0].commit_hash == "abc"
        assert loaded.last_checked.tzinfo is not None

    def test_create_existing_raises(self, store):
        store.create(make_state())
        with pytest.raises(FileExistsError):
            store.create(make_state())

    def test_load_missing_raises(self, store):
        with pytest.raises(ProjectNotFound) as exc:
            store.load("ghost")
        assert "ghost" in str(exc.value)
        assert isinstance(exc.value, KeyError)


class TestSave:
    def test_save_keeps_backup_of_previous_version(self, store):
        state = make_state(current_goal="v1")
        store.create(state)
        state.current_goal = "v2"
        store.save(state)

        backup = json.loads((store.projects_dir / "demo.backup.json").read_text(encoding="utf-8"))
        assert backup["current_goal"] == "v1"
        assert store.load("demo").current_goal == "v2"

    def test_save_rejects_broken_state(self, store):
        state = make_state()
        store.create(state)
        state.max_iterations = 0
        with pytest.raises(ValueError):
            store.save(state)
        assert store.load("demo").max_iterations == 1

    def test_no_temp_file_left_behind(self, store):
        store.create(make_state())
        assert not list(store.projects_dir.glob("*.tmp"))


class TestListing:
    def test_list_by_status(self, store):
        store.create(make_state(project_id="a"))
        store.create(make_state(project_id="b", status=ProjectStatus.WAITING_INPUT))
        store.create(make_state(project_id="c"))

        assert store.list_by_status(ProjectStatus.ACTIVE) == ["a", "c"]
        assert store.list_by_status(ProjectStatus.WAITING_INPUT) == ["b"]

    def test_backups_are_not_listed(self, store):
        state = make_state()
        store.create(state)
        store.save(state)
        assert [s.project_id for s in store.list_all()] == ["demo"]

    def test_corrupt_file_is_skipped(self, store):
        store.create(make_state(project_id="good"))
        (store.projects_dir / "bad.json").write_text("{not json", encoding="utf-8")
        assert [s.project_id for s in store.list_all()] == ["good"]


class TestDelete:
    def test_delete_removes_file_and_backup(self, store):
        state = make_state()
        store.create(state)
        store.save(state)
        store.delete("demo")
        assert not store.exists("demo")
        assert not (store.projects_dir / "demo.backup.json").exists()

    def test_delete_missing_raises(self, store):
        with pytest.raises(ProjectNotFound):
            store.delete("ghost")


def test_blockers_are_persisted(store):
    state = make_state()
    blocker = state.add_blocker("Waiting on API credentials")
    store.create(state)

    loaded = store.load("demo")
    assert loaded.blockers[0].description == "Waiting on API credentials"
    assert loaded.blockers[0].added_at == blocker.added_at
