# src/deadline_relay/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps connectors/storage/calendar providers swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Protocol


class OutboundMessenger(Protocol):
    """
    Connector-side port: how the dispatcher sends text to one channel.

    channel_id is transport specific (Telegram chat id, Matrix room id, "console").
    Implementations raise on failure; the caller decides what a failure means.
    """

    def send_text(self, *, channel_id: str, text: str) -> Awaitable[None]: ...


class ChannelResolver(Protocol):
    """Read side of the identity binding registry."""

    def resolve(self, owner_id: str) -> set[str]: ...


class NotificationLedger(Protocol):
    def has_notified(self, task_id: str, deadline: datetime) -> bool: ...
    def mark_notified(self, task_id: str, deadline: datetime) -> None: ...
    def try_claim(self, task_id: str, deadline: datetime) -> bool: ...
    def release(self, task_id: str, deadline: datetime) -> None: ...
    def forget_task(self, task_id: str) -> int: ...
    def purge_expired(self, now: datetime | None = None) -> int: ...
    def count(self) -> int: ...


class TaskRepo(Protocol):
    # Scanner API
    def list_owner_ids(self) -> list[str]: ...
    def list_open_tasks_for_owner(self, owner_id: str) -> list[Any]: ...

    # Mirror API
    def set_external_event_id(self, task_id: str, event_id: str | None) -> bool: ...


class CredentialRepo(Protocol):
    def get(self, owner_id: str) -> Any | None: ...
    def save(self, credentials: Any) -> None: ...


class CalendarService(Protocol):
    """Insert / patch / delete against one owner's default calendar."""

    async def insert_event(self, credentials: Any, body: dict[str, Any]) -> str: ...
    async def patch_event(self, credentials: Any, event_id: str, body: dict[str, Any]) -> None: ...
    async def delete_event(self, credentials: Any, event_id: str) -> None: ...
