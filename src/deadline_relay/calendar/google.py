# src/deadline_relay/calendar/google.py

"""
Google Calendar v3 client (insert / patch / delete on one calendar per owner).

Access tokens are refreshed with the owner's refresh token when they expire
(or once after a 401) and the refreshed token is written back to the
credential store.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from ..core.ports import CredentialRepo
from .credentials import CalendarCredentials

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"


class CalendarError(Exception):
    """Base error for calendar operations."""


class CalendarAuthError(CalendarError):
    """Credentials are missing, revoked or cannot be refreshed."""


class CalendarRequestError(CalendarError):
    """The calendar API answered with a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


def calendar_event_id(task_id: str) -> str:
    """
    Deterministic event id for a task.

    Google accepts client-chosen ids made of base32hex characters (a-v, 0-9),
    5-1024 long; hex digits are a subset. Re-sending an insert with the same id
    yields 409 instead of a second event.
    """
    digest = hashlib.sha256(str(task_id).encode("utf-8")).hexdigest()
    return f"task{digest[:40]}"


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            desc = payload.get("error_description")
            return f"{err}: {desc}" if isinstance(desc, str) else err
    text = (response.text or "").strip()
    return text[:200] if text else response.reason_phrase


class GoogleCalendarClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        credential_store: CredentialRepo | None = None,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
    ) -> None:
        self._http = http_client
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._store = credential_store
        self._base_url = base_url.rstrip("/")
        self._token_url = token_url
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    # ---- public API ----

    async def insert_event(self, credentials: CalendarCredentials, body: dict[str, Any]) -> str:
        response = await self._request(
            credentials,
            "POST",
            f"/calendars/{quote(credentials.calendar_id, safe='')}/events",
            json_body=body,
        )

        requested_id = body.get("id")
        if response.status_code == 409 and isinstance(requested_id, str) and requested_id:
            logger.info("Calendar event %s already exists; treating insert as done", requested_id)
            return requested_id

        payload = self._json_or_raise(response)
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise CalendarError("Google Calendar insert response is missing an event id")
        return event_id

    async def patch_event(
        self, credentials: CalendarCredentials, event_id: str, body: dict[str, Any]
    ) -> None:
        patch = {k: v for k, v in body.items() if k != "id"}
        response = await self._request(
            credentials,
            "PATCH",
            self._event_path(credentials, event_id),
            json_body=patch,
        )
        self._json_or_raise(response)

    async def delete_event(self, credentials: CalendarCredentials, event_id: str) -> None:
        response = await self._request(credentials, "DELETE", self._event_path(credentials, event_id))
        if response.status_code in (404, 410):
            logger.info("Calendar event %s already gone (%s)", event_id, response.status_code)
            return
        if not 200 <= response.status_code < 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )

    # ---- helpers ----

    @staticmethod
    def _event_path(credentials: CalendarCredentials, event_id: str) -> str:
        eid = (event_id or "").strip()
        if not eid:
            raise ValueError("event_id must be a non-empty string")
        return f"/calendars/{quote(credentials.calendar_id, safe='')}/events/{quote(eid, safe='')}"

    @staticmethod
    def _json_or_raise(response: httpx.Response) -> dict[str, Any]:
        if not 200 <= response.status_code < 300:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarError("Google Calendar API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarError("Google Calendar API returned an unexpected JSON payload shape")
        return payload

    async def _request(
        self,
        credentials: CalendarCredentials,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        response = await self._request_once(credentials, method, url, json_body, force_refresh=False)
        if response.status_code == 401 and credentials.refresh_token:
            response = await self._request_once(credentials, method, url, json_body, force_refresh=True)
        if response.status_code == 401:
            raise CalendarAuthError(f"Calendar credentials rejected for owner {credentials.owner_id}")
        return response

    async def _request_once(
        self,
        credentials: CalendarCredentials,
        method: str,
        url: str,
        json_body: dict[str, Any] | None,
        *,
        force_refresh: bool,
    ) -> httpx.Response:
        token = await self._access_token(credentials, force_refresh=force_refresh)
        try:
            return await self._http.request(
                method,
                url,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise CalendarError(f"Google Calendar request failed: {exc}") from exc

    async def _access_token(self, credentials: CalendarCredentials, *, force_refresh: bool) -> str:
        if not force_refresh and not credentials.is_expired():
            return credentials.access_token

        lock = self._refresh_locks.setdefault(credentials.owner_id, asyncio.Lock())
        async with lock:
            if not force_refresh and not credentials.is_expired():
                return credentials.access_token
            await self._refresh(credentials)
            return credentials.access_token

    async def _refresh(self, credentials: CalendarCredentials) -> None:
        if not credentials.refresh_token:
            raise CalendarAuthError(f"No refresh token for owner {credentials.owner_id}")
        if not self._client_id or not self._client_secret:
            raise CalendarAuthError("Google OAuth client id/secret are not configured")

        try:
            response = await self._http.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CalendarAuthError(f"Google OAuth token refresh request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise CalendarAuthError(
                f"Google OAuth token refresh failed ({response.status_code}): {_safe_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarAuthError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise CalendarAuthError("Google OAuth token response is missing access_token")

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600

        credentials.access_token = access_token.strip()
        credentials.expires_at = time.time() + max(expires_in, 60)
        new_refresh = payload.get("refresh_token")
        if isinstance(new_refresh, str) and new_refresh.strip():
            credentials.refresh_token = new_refresh.strip()

        logger.info("Refreshed calendar access token for owner=%s", credentials.owner_id)
        if self._store is not None:
            try:
                self._store.save(credentials)
            except Exception:
                logger.exception("Failed to persist refreshed token owner=%s", credentials.owner_id)
