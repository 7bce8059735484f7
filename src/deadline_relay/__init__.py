"""Deadline reminders and calendar mirroring for a task list."""

__version__ = "0.1.0"
