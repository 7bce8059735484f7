# src/deadline_relay/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from ..core.state import AppState
from ..identity.registry import BindOutcome
from ..tasks import task_api
from ..tasks.task_api import TaskNotFoundError, TaskValidationError

CommandHandler = Callable[[AppState, list[str], str], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by connectors (/start, /stop, /test, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases or []:
            self._handlers[alias.lower()] = handler

    def extend(self, other: CommandRegistry) -> None:
        self._handlers.update(other._handlers)
        self._help.update(other._help)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def handle(self, state: AppState, line: str, channel_id: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        # Telegram appends the bot name in groups: /start@my_bot
        name = parts[0].split("@", 1)[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return await handler(state, args, channel_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()
console_registry = CommandRegistry()


# ---- channel link commands ----


async def cmd_start(state: AppState, args: list[str], channel_id: str) -> str:
    """
    /start            -> register this channel (no owner yet)
    /start <owner_id> -> link this channel to an owner
    """
    owner_id = args[0] if args else None
    outcome = state.registry.bind(channel_id, owner_id)
    logger.debug("/start channel=%s owner=%s -> %s", channel_id, owner_id, outcome.value)

    if outcome == BindOutcome.CREATED:
        return "Connected! You'll get deadline reminders here."
    if outcome == BindOutcome.UPDATED:
        return "Updated! This chat is now linked to your account."
    return "Already connected! Use /stop to disconnect."


async def cmd_stop(state: AppState, args: list[str], channel_id: str) -> str:
    if not state.registry.unbind(channel_id):
        return "You weren't connected."
    return "Notifications stopped. Use /start to reconnect."


async def cmd_test(state: AppState, args: list[str], channel_id: str) -> str:
    binding = state.registry.get(channel_id)
    if binding is None:
        linked = "No"
    elif binding.is_linked:
        linked = "Yes"
    else:
        linked = "Yes (waiting for account link)"
    return f"Bot is alive!\n\nYour chat id: {channel_id}\nConnected: {linked}\n\nTry /start to connect."


async def cmd_help(state: AppState, args: list[str], channel_id: str) -> str:
    return registry.build_help()


registry.register(
    "start",
    cmd_start,
    help_text="Connect this chat: /start [owner_id].",
    aliases=["link"],
)
registry.register("stop", cmd_stop, help_text="Stop reminders in this chat.", aliases=["unlink"])
registry.register("test", cmd_test, help_text="Check the bot is alive and this chat's link state.", aliases=["status"])
registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])


# ---- local task commands (console only) ----


def _owner_of(state: AppState, channel_id: str) -> str | None:
    binding = state.registry.get(channel_id)
    if binding is None or not binding.is_linked:
        return None
    return binding.owner_id


_NOT_LINKED = "This channel is not linked to an owner. Use /start <owner_id> first."


async def cmd_add(state: AppState, args: list[str], channel_id: str) -> str:
    """/add <deadline> <category> <title...>"""
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED
    if len(args) < 3:
        return "Usage: /add <YYYY-MM-DD[THH:MM]> <category> <title>"

    try:
        task = await task_api.create_task(
            state,
            owner_id=owner_id,
            title=" ".join(args[2:]),
            category=args[1],
            deadline=args[0],
        )
    except TaskValidationError as exc:
        return f"Cannot add task: {exc}"
    return f"Added {task.id}: {task.title} (due {task.deadline})"


_EDITABLE = ("title", "category", "deadline")


async def cmd_edit(state: AppState, args: list[str], channel_id: str) -> str:
    """/edit <task_id> <title|category|deadline> <value...>"""
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED
    if len(args) < 3 or args[1].lower() not in _EDITABLE:
        return "Usage: /edit <task_id> <title|category|deadline> <value>"

    field_name = args[1].lower()
    value = " ".join(args[2:])
    try:
        result = await task_api.edit_task(state, args[0], owner_id=owner_id, **{field_name: value})
    except TaskNotFoundError:
        return f"No task {args[0]}."
    except TaskValidationError as exc:
        return f"Cannot edit task: {exc}"
    return f"Updated {result.task.id}: {field_name} = {getattr(result.task, field_name)}"


async def cmd_done(state: AppState, args: list[str], channel_id: str) -> str:
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED
    if not args:
        return "Usage: /done <task_id>"
    try:
        task = await task_api.complete_task(state, args[0], owner_id=owner_id)
    except TaskNotFoundError:
        return f"No task {args[0]}."
    return f"Completed {task.id}: {task.title}"


async def cmd_del(state: AppState, args: list[str], channel_id: str) -> str:
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED
    if not args:
        return "Usage: /del <task_id>"
    try:
        task = await task_api.delete_task(state, args[0], owner_id=owner_id)
    except TaskNotFoundError:
        return f"No task {args[0]}."
    return f"Deleted {task.id}: {task.title}"


async def cmd_tasks(state: AppState, args: list[str], channel_id: str) -> str:
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED

    tasks = task_api.list_tasks(state, owner_id)
    if not tasks:
        return "No tasks."
    lines = [f"Tasks for {owner_id}:"]
    for t in tasks:
        mark = "x" if t.completed else " "
        synced = " [cal]" if t.external_event_id else ""
        lines.append(f"  [{mark}] {t.id}  {t.deadline}  {t.category}: {t.title}{synced}")
    return "\n".join(lines)


async def cmd_category(state: AppState, args: list[str], channel_id: str) -> str:
    """/category <old> <new>"""
    owner_id = _owner_of(state, channel_id)
    if owner_id is None:
        return _NOT_LINKED
    if len(args) != 2:
        return "Usage: /category <old> <new>"
    try:
        moved = await task_api.rename_category(state, owner_id, args[0], args[1])
    except TaskValidationError as exc:
        return f"Cannot rename category: {exc}"
    return f"Renamed {args[0]} -> {args[1]} on {moved} task(s)."


async def cmd_scan(state: AppState, args: list[str], channel_id: str) -> str:
    report = await state.scanner.tick()
    return (
        f"Scan done: scanned={report.scanned} "
        f"reminded={len(report.dispatched)} "
        f"skipped={len(report.already_notified)} "
        f"malformed={len(report.malformed)} "
        f"errors={len(report.errors)}"
    )


async def cmd_console_help(state: AppState, args: list[str], channel_id: str) -> str:
    return console_registry.build_help()


console_registry.extend(registry)
console_registry.register("add", cmd_add, help_text="Add a task: /add <deadline> <category> <title>.")
console_registry.register(
    "edit", cmd_edit, help_text="Edit a task: /edit <task_id> <title|category|deadline> <value>."
)
console_registry.register("done", cmd_done, help_text="Mark a task completed: /done <task_id>.")
console_registry.register("del", cmd_del, help_text="Delete a task: /del <task_id>.", aliases=["rm"])
console_registry.register("tasks", cmd_tasks, help_text="List this owner's tasks.", aliases=["ls"])
console_registry.register("category", cmd_category, help_text="Rename a category: /category <old> <new>.")
console_registry.register("scan", cmd_scan, help_text="Run one deadline scan now.")
console_registry.register("help", cmd_console_help, help_text="Show available commands.", aliases=["h", "?"])
