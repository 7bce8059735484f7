# src/deadline_relay/connectors/telegram.py

"""
Telegram connector (Bot API over httpx).

- TelegramBotClient: thin wrapper over sendMessage / getUpdates / getMe.
- TelegramMessenger: OutboundMessenger for the reminder dispatcher.
- run_telegram_bot: long-poll loop feeding /start, /stop, /test into the
  command registry. Updates queued while the bot was offline are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..cli.commands import CommandRegistry
from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
# Telegram rejects longer text in one message.
MAX_MESSAGE_LENGTH = 4096


class TelegramError(Exception):
    """Bot API call failed (transport error, HTTP error or ok=false)."""

    def __init__(self, method: str, description: str, *, status_code: int | None = None) -> None:
        self.method = method
        self.description = description
        self.status_code = status_code
        super().__init__(f"Telegram {method} failed: {description}")


class TelegramBotClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token: str,
        *,
        api_base: str = TELEGRAM_API_BASE,
    ) -> None:
        token = (token or "").strip()
        if not token:
            raise ValueError("Telegram bot token is required")
        self._http = http_client
        self._base = f"{api_base.rstrip('/')}/bot{token}"

    async def _call(self, method: str, payload: dict[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        try:
            kwargs: dict[str, Any] = {"json": payload or {}}
            if timeout is not None:
                kwargs["timeout"] = timeout
            response = await self._http.post(f"{self._base}/{method}", **kwargs)
        except httpx.HTTPError as exc:
            raise TelegramError(method, str(exc) or exc.__class__.__name__) from exc

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.status_code >= 400 or not isinstance(data, dict) or data.get("ok") is not True:
            description = data.get("description") if isinstance(data, dict) else None
            raise TelegramError(
                method,
                str(description or f"HTTP {response.status_code}"),
                status_code=response.status_code,
            )
        return data.get("result")

    async def get_me(self) -> dict[str, Any]:
        result = await self._call("getMe")
        return result if isinstance(result, dict) else {}

    async def send_message(self, chat_id: str, text: str) -> None:
        body = text if len(text) <= MAX_MESSAGE_LENGTH else text[: MAX_MESSAGE_LENGTH - 1] + "…"
        await self._call("sendMessage", {"chat_id": chat_id, "text": body})

    async def get_updates(self, *, offset: int | None = None, timeout: int = 30) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # The HTTP timeout has to outlive the long-poll timeout.
        result = await self._call("getUpdates", payload, timeout=timeout + 10.0)
        return [u for u in result or [] if isinstance(u, dict)]

    async def drop_pending_updates(self) -> int | None:
        """Skip everything queued while offline; returns the next offset to poll from."""
        pending = await self.get_updates(offset=-1, timeout=0)
        if not pending:
            return None
        last = max(int(u.get("update_id", 0)) for u in pending)
        await self.get_updates(offset=last + 1, timeout=0)
        logger.info("Dropped pending Telegram updates up to id=%d", last)
        return last + 1


class TelegramMessenger:
    def __init__(self, client: TelegramBotClient) -> None:
        self._client = client

    async def send_text(self, *, channel_id: str, text: str) -> None:
        await self._client.send_message(channel_id, text)


def parse_message_update(update: dict[str, Any]) -> tuple[str, str] | None:
    """Return (chat_id, text) for a text message update, else None."""
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    text = message.get("text")
    if not isinstance(chat, dict) or chat.get("id") is None or not isinstance(text, str):
        return None
    return str(chat["id"]), text.strip()


async def handle_update(
    state: AppState,
    client: TelegramBotClient,
    update: dict[str, Any],
    *,
    commands: CommandRegistry = command_registry,
) -> str | None:
    parsed = parse_message_update(update)
    if parsed is None:
        return None
    chat_id, text = parsed
    if not text.startswith("/"):
        return None

    reply = await commands.handle(state, text, chat_id)
    if reply is None:
        return None

    logger.info("Telegram command from chat=%s: %s", chat_id, text.split()[0])
    try:
        await client.send_message(chat_id, reply)
    except TelegramError:
        logger.exception("Failed to send command reply to chat=%s", chat_id)
    return reply


async def run_telegram_bot(
    state: AppState,
    client: TelegramBotClient,
    stop_event: asyncio.Event,
    *,
    poll_timeout: int = 30,
    error_backoff: float = 5.0,
) -> None:
    try:
        me = await client.get_me()
        logger.info("Telegram bot started as @%s", me.get("username", "?"))
    except TelegramError:
        logger.exception("Telegram getMe failed; check RELAY_TELEGRAM_BOT_TOKEN")
        return

    offset: int | None = None
    try:
        offset = await client.drop_pending_updates()
    except TelegramError:
        logger.warning("Could not drop pending Telegram updates", exc_info=True)

    while not stop_event.is_set():
        try:
            updates = await client.get_updates(offset=offset, timeout=poll_timeout)
        except TelegramError as exc:
            if exc.status_code == 409:
                logger.error("Telegram 409 Conflict: another process is polling this bot token")
            else:
                logger.warning("Telegram getUpdates failed: %s", exc.description)
            await _wait_or_stop(stop_event, error_backoff)
            continue

        for update in updates:
            offset = int(update.get("update_id", 0)) + 1
            try:
                await handle_update(state, client, update)
            except Exception:
                logger.exception("Telegram update handler crashed update_id=%s", update.get("update_id"))

    logger.info("Telegram bot stopped.")


async def _wait_or_stop(stop_event: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except TimeoutError:
        return
