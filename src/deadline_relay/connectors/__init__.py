"""Messaging transports (Telegram, Matrix, console)."""
