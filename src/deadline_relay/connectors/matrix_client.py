# src/deadline_relay/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)

try:
    import olm  # type: ignore  # noqa: F401

    OLM_AVAILABLE = True
except ImportError:
    OLM_AVAILABLE = False


def session_file(store_dir: Path) -> Path:
    return store_dir / "session.json"


def load_session(path: Path) -> dict[str, str] | None:
    """Stored access token / user id / device id, or None if missing or incomplete."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable Matrix session file %s: %r", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    keys = ("access_token", "user_id", "device_id")
    if not all(isinstance(data.get(k), str) and data[k] for k in keys):
        logger.warning("Matrix session file %s is missing fields; ignoring it", path)
        return None
    return {k: data[k] for k in keys}


def save_session(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:
        logger.debug("chmod failed for %s", path, exc_info=True)


async def create_matrix_client(settings) -> AsyncClient | None:
    """
    Log in (or restore a saved session) as the reminder bot.

    The session file holds an access token; it lives under the gitignored data dir.
    Encrypted rooms only work when python-olm is installed.
    """
    homeserver = (getattr(settings, "matrix_homeserver", "") or "").strip()
    user_id = (getattr(settings, "matrix_user_id", "") or "").strip()
    password = (getattr(settings, "matrix_password", "") or "").strip()
    store_dir = Path(getattr(settings, "matrix_store_path", Path(".local/relay/matrix_store")))

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set RELAY_MATRIX_HOMESERVER and RELAY_MATRIX_USER_ID")
        return None

    store_dir.mkdir(parents=True, exist_ok=True)
    path = session_file(store_dir)

    encryption_enabled = bool(OLM_AVAILABLE)
    if not encryption_enabled:
        logger.warning("python-olm not installed: reminders to encrypted rooms will fail")

    client = AsyncClient(
        homeserver,
        user_id,
        store_path=str(store_dir) if encryption_enabled else None,
        config=AsyncClientConfig(encryption_enabled=encryption_enabled, store_sync_tokens=True),
    )

    session = load_session(path)
    if session is not None:
        client.access_token = session["access_token"]
        client.user_id = session["user_id"]
        client.device_id = session["device_id"]
        if encryption_enabled:
            client.load_store()
        logger.info("Matrix session restored for %s", client.user_id)
        return client

    if not password:
        logger.error("No Matrix session saved and RELAY_MATRIX_PASSWORD is empty; cannot log in")
        await client.close()
        return None

    device_name = f"{getattr(settings, 'app_name', 'deadline-relay')} (Python)"
    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    save_session(
        path,
        {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id},
    )
    logger.info("Matrix session saved to %s (user=%s)", path, resp.user_id)
    return client
