# src/deadline_relay/reminders/dispatcher.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, tzinfo

from ..core.ports import ChannelResolver, OutboundMessenger
from ..tasks.task_models import DEFAULT_DEADLINE_TIME, Task, parse_deadline

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchReport:
    owner_id: str
    task_id: str
    attempted: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def attempted_any(self) -> bool:
        return bool(self.attempted)


def format_reminder(task: Task, *, tz: tzinfo = UTC, default_time: str = DEFAULT_DEADLINE_TIME) -> str:
    try:
        due = parse_deadline(task.deadline, tz=tz, default_time=default_time)
        due_text = due.astimezone(tz).strftime("%a, %d %b %Y %H:%M %Z").strip()
    except ValueError:
        due_text = task.deadline
    category = task.category or "Uncategorized"
    return f'Reminder: "{task.title}"\nCategory: {category}\nDue: {due_text}'


class NotificationDispatcher:
    """
    Send one reminder to every channel bound to the task owner.

    Channels are independent: a failure on one is logged and the rest still get
    the message. Nothing is retried (at most one delivery attempt per channel).
    """

    def __init__(
        self,
        registry: ChannelResolver,
        messenger: OutboundMessenger,
        *,
        tz: tzinfo = UTC,
        default_time: str = DEFAULT_DEADLINE_TIME,
    ) -> None:
        self._registry = registry
        self._messenger = messenger
        self._tz = tz
        self._default_time = default_time

    async def dispatch(self, owner_id: str, task: Task) -> DispatchReport:
        report = DispatchReport(owner_id=owner_id, task_id=task.id)

        channels = sorted(self._registry.resolve(owner_id))
        if not channels:
            logger.info("No linked channels for owner=%s; reminder for task %s not sent", owner_id, task.id)
            return report

        text = format_reminder(task, tz=self._tz, default_time=self._default_time)

        for channel_id in channels:
            report.attempted.append(channel_id)
            try:
                await self._messenger.send_text(channel_id=channel_id, text=text)
            except Exception as exc:
                logger.exception("Reminder send failed task_id=%s channel=%s", task.id, channel_id)
                report.failed[channel_id] = str(exc) or exc.__class__.__name__
                continue
            report.delivered.append(channel_id)
            logger.info("Reminder sent task_id=%s channel=%s", task.id, channel_id)

        return report
