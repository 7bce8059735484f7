# tests/test_task_api.py

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from deadline_relay.tasks import task_api
from deadline_relay.tasks.task_api import TaskNotFoundError, TaskValidationError
from deadline_relay.tasks.task_models import FileRef

from .fakes import FakeCalendar


@pytest.mark.asyncio
async def test_create_normalizes_date_only_deadline(state) -> None:
    task = await task_api.create_task(
        state, owner_id="u1", title=" Essay ", category="Study", deadline="2025-03-12"
    )
    assert task.deadline == "2025-03-12T09:00:00"
    assert task.title == "Essay"
    assert task_api.list_tasks(state, "u1") == [task]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [
        {"owner_id": "", "title": "t", "category": "c", "deadline": "2025-03-12"},
        {"owner_id": "u1", "title": "", "category": "c", "deadline": "2025-03-12"},
        {"owner_id": "u1", "title": "t", "category": " ", "deadline": "2025-03-12"},
        {"owner_id": "u1", "title": "t", "category": "c", "deadline": "soon"},
    ],
)
async def test_create_rejects_missing_or_bad_fields(state, fields) -> None:
    with pytest.raises(TaskValidationError):
        await task_api.create_task(state, **fields)
    assert state.task_store.count_tasks() == 0


@pytest.mark.asyncio
async def test_edit_checks_ownership(state) -> None:
    task = await task_api.create_task(state, owner_id="u1", title="t", category="c", deadline="2025-03-12")

    with pytest.raises(TaskNotFoundError):
        await task_api.edit_task(state, task.id, owner_id="u2", title="stolen")
    with pytest.raises(TaskNotFoundError):
        await task_api.delete_task(state, "missing", owner_id="u1")
    assert state.task_store.get_task(task.id).title == "t"


@pytest.mark.asyncio
async def test_edit_reports_replaced_file(state) -> None:
    old = FileRef(name="v1.pdf", path="/uploads/v1.pdf")
    new = FileRef(name="v2.pdf", path="/uploads/v2.pdf")
    task = await task_api.create_task(
        state, owner_id="u1", title="t", category="c", deadline="2025-03-12", file=old
    )

    result = await task_api.edit_task(state, task.id, owner_id="u1", file=new)
    assert result.previous_file_path == "/uploads/v1.pdf"
    assert result.task.file == new

    untouched = await task_api.edit_task(state, task.id, owner_id="u1", title="t2")
    assert untouched.previous_file_path is None
    assert untouched.task.file == new


@pytest.mark.asyncio
async def test_delete_forgets_ledger_entries(state) -> None:
    task = await task_api.create_task(
        state, owner_id="u1", title="t", category="c", deadline="2025-03-12T09:00:00"
    )
    due = datetime(2025, 3, 12, 9, 0, tzinfo=UTC)
    state.ledger.mark_notified(task.id, due)

    await task_api.delete_task(state, task.id, owner_id="u1")

    assert state.ledger.has_notified(task.id, due) is False


@pytest.mark.asyncio
async def test_rename_category_mirrors_each_task(state, calendar: FakeCalendar, connect_calendar) -> None:
    connect_calendar("u1")
    a = await task_api.create_task(state, owner_id="u1", title="a", category="Study", deadline="2025-03-12")
    await task_api.create_task(state, owner_id="u1", title="b", category="Study", deadline="2025-03-13")
    await task_api.create_task(state, owner_id="u1", title="c", category="Home", deadline="2025-03-14")

    moved = await task_api.rename_category(state, "u1", "Study", "Exams")

    assert moved == 2
    assert calendar.ops().count("patch") == 2
    assert "Category: Exams" in calendar.events[a.external_event_id]["description"]
    assert await task_api.rename_category(state, "u1", "Exams", "Exams") == 0
