# src/deadline_relay/tasks/task_api.py

"""
Task mutations used by the command handlers.

Every mutation lands in the task store first; the calendar mirror runs after
it, either inline or through the outbox (RELAY_CALENDAR_MODE=queued). Mirror
failures never undo or block the local change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..calendar.mirror import MirrorOp, MirrorResult
from ..core.state import AppState
from .task_models import FileRef, Task, normalize_deadline

logger = logging.getLogger(__name__)


class TaskValidationError(ValueError):
    """Missing or malformed task fields."""


class TaskNotFoundError(LookupError):
    """No task with that id belongs to the owner."""


@dataclass(slots=True)
class EditResult:
    task: Task
    # Set when the attachment was replaced; the old file is the caller's to clean up.
    previous_file_path: str | None = None


def _required(name: str, value: str | None) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise TaskValidationError(f"{name} is required")
    return cleaned


def _deadline(state: AppState, raw: str | None) -> str:
    try:
        return normalize_deadline(raw, default_time=state.default_deadline_time)
    except ValueError as exc:
        raise TaskValidationError(str(exc)) from exc


def _owned(state: AppState, task_id: str, owner_id: str) -> Task:
    task = state.task_store.get_task_for_owner(task_id, owner_id)
    if task is None:
        raise TaskNotFoundError(f"task {task_id} not found")
    return task


async def _mirror(state: AppState, op: MirrorOp, task: Task) -> MirrorResult | None:
    if state.outbox is not None:
        state.outbox.submit(op, task)
        return None
    return await state.mirror.apply(op, task)


async def create_task(
    state: AppState,
    *,
    owner_id: str,
    title: str,
    category: str,
    deadline: str,
    file: FileRef | None = None,
) -> Task:
    owner = _required("owner_id", owner_id)
    task = state.task_store.add_task(
        owner_id=owner,
        title=_required("title", title),
        category=_required("category", category),
        deadline=_deadline(state, deadline),
        file=file,
    )
    logger.info("Task created id=%s owner=%s deadline=%s", task.id, owner, task.deadline)

    await _mirror(state, MirrorOp.CREATE, task)
    return state.task_store.get_task(task.id) or task


async def edit_task(
    state: AppState,
    task_id: str,
    *,
    owner_id: str,
    title: str | None = None,
    category: str | None = None,
    deadline: str | None = None,
    file: FileRef | None = None,
) -> EditResult:
    """Update the given fields; None leaves a field as it is."""
    current = _owned(state, task_id, owner_id)

    changes: dict[str, object] = {}
    if title is not None:
        changes["title"] = _required("title", title)
    if category is not None:
        changes["category"] = _required("category", category)
    if deadline is not None:
        changes["deadline"] = _deadline(state, deadline)
    if file is not None:
        changes["file"] = file

    updated = state.task_store.update_task_fields(current.id, **changes)
    if updated is None:
        raise TaskNotFoundError(f"task {task_id} disappeared during edit")

    previous_file_path = None
    if file is not None and current.file is not None and current.file.path != file.path:
        previous_file_path = current.file.path or None

    logger.info("Task edited id=%s fields=%s", updated.id, ",".join(sorted(changes)) or "-")
    await _mirror(state, MirrorOp.UPDATE, updated)
    return EditResult(task=updated, previous_file_path=previous_file_path)


async def complete_task(state: AppState, task_id: str, *, owner_id: str) -> Task:
    current = _owned(state, task_id, owner_id)
    updated = state.task_store.update_task_fields(current.id, completed=True)
    if updated is None:
        raise TaskNotFoundError(f"task {task_id} disappeared during completion")

    logger.info("Task completed id=%s", updated.id)
    await _mirror(state, MirrorOp.UPDATE, updated)
    return updated


async def delete_task(state: AppState, task_id: str, *, owner_id: str) -> Task:
    """Delete the calendar event first, then the task; the task goes even if the calendar call fails."""
    current = _owned(state, task_id, owner_id)

    await _mirror(state, MirrorOp.DELETE, current)

    state.task_store.delete_task(current.id)
    forgotten = state.ledger.forget_task(current.id)
    logger.info("Task deleted id=%s ledger_entries=%d", current.id, forgotten)
    return current


def list_tasks(state: AppState, owner_id: str) -> list[Task]:
    return state.task_store.list_tasks_for_owner(owner_id)


async def rename_category(state: AppState, owner_id: str, old: str, new: str) -> int:
    old_name = _required("old category", old)
    new_name = _required("new category", new)
    if old_name == new_name:
        return 0

    touched = state.task_store.rename_category(owner_id, old_name, new_name)
    for task_id in touched:
        task = state.task_store.get_task(task_id)
        if task is not None:
            await _mirror(state, MirrorOp.UPDATE, task)

    logger.info("Category renamed owner=%s %r -> %r tasks=%d", owner_id, old_name, new_name, len(touched))
    return len(touched)
