# src/deadline_relay/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from nio import AsyncClient, MatrixRoom, RoomMessageText, RoomSendResponse

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from .matrix_client import create_matrix_client

logger = logging.getLogger(__name__)


def _ms_now() -> int:
    return int(time.time() * 1000)


class MatrixNotReadyError(RuntimeError):
    """A reminder was sent before the Matrix client finished logging in."""


class MatrixMessenger:
    """OutboundMessenger for Matrix; the channel id is a room id."""

    def __init__(self) -> None:
        self._client: AsyncClient | None = None

    def attach(self, client: AsyncClient | None) -> None:
        self._client = client

    async def send_text(self, *, channel_id: str, text: str) -> None:
        if self._client is None:
            raise MatrixNotReadyError("Matrix client is not connected")
        resp = await self._client.room_send(
            room_id=channel_id,
            message_type="m.room.message",
            content={"msgtype": "m.text", "body": text},
            ignore_unverified_devices=True,
        )
        if not isinstance(resp, RoomSendResponse):
            raise RuntimeError(f"Matrix room_send failed: {resp}")


async def run_matrix_bot(state: AppState, messenger: MatrixMessenger, stop_event: asyncio.Event) -> None:
    """
    Matrix connector:

    login -> message callback -> sync loop until stop_event is set.
    Commands are routed to the registry with the room id as the channel id.
    """
    client = await create_matrix_client(state.settings)
    if client is None:
        logger.error("Matrix client creation failed; connector will stop.")
        return

    startup_ts = _ms_now()
    messenger.attach(client)

    async def message_callback(room: MatrixRoom, event: RoomMessageText) -> None:
        # Backlog from before startup is not replayed.
        ts = getattr(event, "server_timestamp", None)
        if isinstance(ts, int) and ts < startup_ts:
            return
        if event.sender == client.user_id:
            return

        body = (event.body or "").strip()
        if not body.startswith("/"):
            return

        try:
            reply = await command_registry.handle(state, body, room.room_id)
        except Exception:
            logger.exception("Command handler crashed room=%s", room.room_id)
            reply = "Internal error while handling a command."
        if reply is None:
            return

        try:
            await messenger.send_text(channel_id=room.room_id, text=reply)
        except Exception:
            logger.exception("Failed to send command reply room=%s", room.room_id)

    client.add_event_callback(message_callback, RoomMessageText)

    try:
        await client.sync(timeout=30000, full_state=True)
        logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))

        while not stop_event.is_set():
            await client.sync(timeout=30000, full_state=False)
    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
        raise
    finally:
        messenger.attach(None)
        with contextlib.suppress(Exception):
            await client.close()
        logger.info("Matrix connector stopped.")
