# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from deadline_relay.tasks.task_models import FileRef
from deadline_relay.tasks.task_store import TaskStore


def test_add_get_update_delete(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")

    task = store.add_task(
        owner_id="u1",
        title="  Submit report ",
        category="Work",
        deadline="2025-03-10T09:00:00",
        file=FileRef(name="report.docx", path="/uploads/report.docx"),
    )
    assert task.title == "Submit report"
    assert task.completed is False
    assert task.file_name == "report.docx"
    assert task.external_event_id is None
    assert store.count_tasks() == 1

    updated = store.update_task_fields(task.id, title="Submit final report", completed=True, file=None)
    assert updated is not None
    assert updated.title == "Submit final report"
    assert updated.completed is True
    assert updated.file is None
    assert updated.updated_at >= task.updated_at

    assert store.get_task_for_owner(task.id, "u2") is None
    assert store.delete_task(task.id) is True
    assert store.delete_task(task.id) is False
    assert store.get_task(task.id) is None


def test_update_without_fields_leaves_row_untouched(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    task = store.add_task(owner_id="u1", title="t", category="c", deadline="2025-03-10T09:00:00")

    same = store.update_task_fields(task.id)
    assert same == task


def test_open_tasks_and_owner_listing(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    a = store.add_task(owner_id="u1", title="a", category="c", deadline="2025-03-10T09:00:00")
    b = store.add_task(owner_id="u1", title="b", category="c", deadline="2025-03-11T09:00:00")
    store.add_task(owner_id="u2", title="c", category="c", deadline="2025-03-12T09:00:00")
    store.update_task_fields(b.id, completed=True)

    assert store.list_owner_ids() == ["u1", "u2"]
    assert [t.id for t in store.list_open_tasks_for_owner("u1")] == [a.id]
    assert len(store.list_tasks_for_owner("u1")) == 2


def test_required_fields(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    with pytest.raises(ValueError):
        store.add_task(owner_id="", title="t", category="c", deadline="2025-03-10")
    with pytest.raises(ValueError):
        store.add_task(owner_id="u1", title=" ", category="c", deadline="2025-03-10")
    with pytest.raises(ValueError):
        store.add_task(owner_id="u1", title="t", category="c", deadline="")


def test_external_event_id_and_category_rename(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    a = store.add_task(owner_id="u1", title="a", category="Study", deadline="2025-03-10T09:00:00")
    store.add_task(owner_id="u2", title="b", category="Study", deadline="2025-03-10T09:00:00")

    assert store.set_external_event_id(a.id, "evt1") is True
    assert store.get_task(a.id).external_event_id == "evt1"
    store.set_external_event_id(a.id, None)
    assert store.get_task(a.id).external_event_id is None

    touched = store.rename_category("u1", "Study", "Exams")
    assert touched == [a.id]
    assert store.get_task(a.id).category == "Exams"
    assert store.rename_category("u1", "Missing", "X") == []

    store.delete_task(a.id)
    assert store.set_external_event_id(a.id, "evt2") is False


def test_old_schema_is_migrated(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        "CREATE TABLE tasks (id TEXT PRIMARY KEY, owner_id TEXT NOT NULL, title TEXT NOT NULL, deadline TEXT NOT NULL)"
    )
    conn.execute("INSERT INTO tasks VALUES ('t1', 'u1', 'legacy', '2025-03-10')")
    conn.commit()
    conn.close()

    store = TaskStore(db)
    task = store.get_task("t1")
    assert task is not None
    assert task.category == ""
    assert task.completed is False
    assert task.deadline == "2025-03-10"
    assert task.external_event_id is None
