# src/deadline_relay/identity/linking.py

"""
Account-side linking.

These helpers are what an authenticated API layer calls once it has verified
who the owner is. They share the registry with the inbound command listener.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from .registry import BindOutcome, IdentityRegistry

logger = logging.getLogger(__name__)


def link_channel(registry: IdentityRegistry, *, owner_id: str, channel_id: str) -> BindOutcome:
    """Bind a channel to a verified owner id. Re-linking to another owner wins."""
    owner = (owner_id or "").strip()
    channel = (channel_id or "").strip()
    if not owner:
        raise ValueError("owner_id is required")
    if not channel:
        raise ValueError("channel_id is required")

    outcome = registry.bind(channel, owner)
    logger.info("Linking call owner=%s channel=%s -> %s", owner, channel, outcome.value)
    return outcome


def connection_status(registry: IdentityRegistry, owner_id: str) -> bool:
    """True if the owner has at least one linked channel."""
    return bool(registry.resolve(owner_id))


def build_link_hint(bot_username: str, owner_id: str) -> str | None:
    """Telegram deep link that sends `/start <owner_id>` from the user's chat."""
    bot = (bot_username or "").strip().lstrip("@")
    owner = (owner_id or "").strip()
    if not bot or not owner:
        return None
    return f"https://t.me/{bot}?start={quote(owner, safe='')}"
