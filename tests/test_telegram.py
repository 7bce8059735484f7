# tests/test_telegram.py

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from deadline_relay.connectors.telegram import (
    TelegramBotClient,
    TelegramError,
    TelegramMessenger,
    handle_update,
    parse_message_update,
    run_telegram_bot,
)

TOKEN = "123:abc"


class BotApi:
    """Fake Bot API: canned getUpdates batches, records every call."""

    def __init__(self, batches: list[list[dict]] | None = None) -> None:
        self.batches = list(batches or [])
        self.calls: list[tuple[str, dict]] = []
        self.stop_event: asyncio.Event | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))

        if method == "getMe":
            return httpx.Response(200, json={"ok": True, "result": {"username": "relay_bot"}})
        if method == "sendMessage":
            if payload.get("chat_id") == "blocked":
                return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})
        if method == "getUpdates":
            if payload.get("offset") == -1:
                return httpx.Response(200, json={"ok": True, "result": [{"update_id": 7}]})
            if payload.get("timeout") == 0:
                return httpx.Response(200, json={"ok": True, "result": []})
            if self.batches:
                return httpx.Response(200, json={"ok": True, "result": self.batches.pop(0)})
            if self.stop_event is not None:
                self.stop_event.set()
            return httpx.Response(200, json={"ok": True, "result": []})
        return httpx.Response(404, json={"ok": False, "description": "Not Found"})

    def sent(self) -> list[dict]:
        return [p for m, p in self.calls if m == "sendMessage"]


def _bot(api: BotApi) -> TelegramBotClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return TelegramBotClient(http, TOKEN, api_base="https://tg.test")


def _message(update_id: int, chat_id: int, text: str) -> dict:
    return {"update_id": update_id, "message": {"chat": {"id": chat_id}, "text": text}}


def test_token_is_required() -> None:
    with pytest.raises(ValueError):
        TelegramBotClient(httpx.AsyncClient(), "  ")


def test_parse_message_update() -> None:
    assert parse_message_update(_message(1, 42, " /start u1 ")) == ("42", "/start u1")
    assert parse_message_update({"update_id": 1, "edited_message": {}}) is None
    assert parse_message_update({"message": {"chat": {"id": 1}, "sticker": {}}}) is None


@pytest.mark.asyncio
async def test_messenger_sends_and_raises_on_api_error() -> None:
    api = BotApi()
    messenger = TelegramMessenger(_bot(api))

    await messenger.send_text(channel_id="42", text="hi")
    assert api.sent() == [{"chat_id": "42", "text": "hi"}]

    with pytest.raises(TelegramError) as excinfo:
        await messenger.send_text(channel_id="blocked", text="hi")
    assert excinfo.value.status_code == 403
    assert "blocked" in excinfo.value.description


@pytest.mark.asyncio
async def test_long_messages_are_truncated() -> None:
    api = BotApi()
    await _bot(api).send_message("42", "x" * 5000)
    assert len(api.sent()[0]["text"]) == 4096


@pytest.mark.asyncio
async def test_handle_update_replies_to_commands_only(state) -> None:
    api = BotApi()
    bot = _bot(api)

    assert await handle_update(state, bot, _message(1, 42, "hello")) is None
    reply = await handle_update(state, bot, _message(2, 42, "/start u1"))

    assert reply is not None and "Connected" in reply
    assert state.registry.resolve("u1") == {"42"}
    assert api.sent()[0]["chat_id"] == "42"


@pytest.mark.asyncio
async def test_run_loop_drops_backlog_and_routes_commands(state) -> None:
    api = BotApi(batches=[[_message(8, 42, "/start u1"), _message(9, 43, "/test")]])
    stop_event = asyncio.Event()
    api.stop_event = stop_event

    await asyncio.wait_for(run_telegram_bot(state, _bot(api), stop_event, poll_timeout=1), timeout=5)

    polls = [p for m, p in api.calls if m == "getUpdates"]
    assert polls[0]["offset"] == -1
    assert polls[1]["offset"] == 8
    assert polls[2]["offset"] == 8
    assert polls[3]["offset"] == 10
    assert state.registry.resolve("u1") == {"42"}
    assert [p["chat_id"] for p in api.sent()] == ["42", "43"]
