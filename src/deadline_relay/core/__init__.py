"""Ports, app state and small concurrency/time helpers shared by every package."""
