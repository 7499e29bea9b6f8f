"""Zoom meetings via Server-to-Server OAuth."""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from lms.config import settings

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 30


class ZoomError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ZoomService:
    """Create, update and delete scheduled meetings for class sessions.

    The account-credentials token is cached on the instance and refreshed 30
    seconds before Zoom says it expires.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.account_id = settings.zoom_account_id
        self.client_id = settings.zoom_client_id
        self.client_secret = settings.zoom_client_secret
        self.user_id = settings.zoom_user_id
        self.api_base = settings.zoom_api_base.rstrip("/")
        self.oauth_url = settings.zoom_oauth_url
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=20.0, transport=self._transport)

    async def get_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self.is_configured:
            raise ZoomError("Zoom credentials are not configured")
        async with self._client() as client:
            try:
                response = await client.post(
                    self.oauth_url,
                    params={"grant_type": "account_credentials", "account_id": self.account_id},
                    auth=(self.client_id, self.client_secret),
                )
            except httpx.HTTPError as e:
                raise ZoomError(f"Zoom token request failed: {e}") from e
        if response.status_code != 200:
            raise ZoomError(f"Zoom token fetch failed: {response.text}", response.status_code)
        data = self._json(response)
        if not data.get("access_token"):
            raise ZoomError("No access_token in Zoom token response", response.status_code)
        self._token = data["access_token"]
        expires_in = int(data.get("expires_in") or 3600)
        self._token_expires_at = time.monotonic() + expires_in - TOKEN_REFRESH_MARGIN_SECONDS
        return self._token

    async def _request(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        token = await self.get_access_token()
        async with self._client() as client:
            try:
                return await client.request(
                    method,
                    f"{self.api_base}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.HTTPError as e:
                raise ZoomError(f"Zoom {method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ZoomError(f"Zoom returned a non-JSON reply: {response.text[:200]}", response.status_code) from e
        if not isinstance(data, dict):
            raise ZoomError(f"Unexpected Zoom reply: {data!r}", response.status_code)
        return data

    @staticmethod
    def meeting_body(
        topic: str,
        start_at: datetime,
        duration_minutes: int,
        timezone: str,
        auto_recording: str = "cloud",
        waiting_room: bool = True,
    ) -> dict[str, Any]:
        """``start_at`` is naive UTC; Zoom wants a ``Z`` suffixed ISO string."""
        return {
            "topic": topic,
            "type": 2,
            "start_time": start_at.replace(microsecond=0).isoformat() + "Z",
            "duration": duration_minutes,
            "timezone": timezone,
            "settings": {
                "join_before_host": False,
                "host_video": False,
                "participant_video": False,
                "approval_type": 0,
                "waiting_room": waiting_room,
                "auto_recording": auto_recording,
            },
        }

    async def create_meeting(self, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", f"/users/{quote(self.user_id)}/meetings", json=body)
        if response.status_code not in (200, 201):
            raise ZoomError(f"Failed to create Zoom meeting: {response.text}", response.status_code)
        return self._json(response)

    async def update_meeting(self, meeting_id: str, body: dict[str, Any]) -> None:
        response = await self._request("PATCH", f"/meetings/{quote(str(meeting_id))}", json=body)
        if response.status_code not in (200, 204):
            raise ZoomError(f"Failed to update Zoom meeting: {response.text}", response.status_code)

    async def get_recordings(self, meeting_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/meetings/{quote(str(meeting_id))}/recordings")
        if response.status_code != 200:
            raise ZoomError(f"Failed to fetch Zoom recordings: {response.text}", response.status_code)
        return self._json(response)

    async def delete_meeting(self, meeting_id: str) -> bool:
        """Delete a meeting. An already deleted meeting (404) counts as success."""
        response = await self._request("DELETE", f"/meetings/{quote(str(meeting_id))}")
        if response.status_code in (200, 204, 404):
            return True
        raise ZoomError(f"Failed to delete Zoom meeting: {response.text}", response.status_code)


def _hmac_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def url_validation_response(plain_token: str, secret: str) -> dict[str, str]:
    """Answer to Zoom's ``endpoint.url_validation`` challenge."""
    return {"plainToken": plain_token, "encryptedToken": _hmac_hex(secret, plain_token)}


def verify_webhook_signature(secret: str, timestamp: str, body: bytes, signature: str) -> bool:
    """Check ``x-zm-signature``: ``v0=`` + HMAC-SHA256 of ``v0:{timestamp}:{body}``."""
    if not timestamp or not signature:
        return False
    expected = "v0=" + _hmac_hex(secret, f"v0:{timestamp}:{body.decode('utf-8', errors='replace')}")
    return hmac.compare_digest(expected, signature)


_zoom_service: ZoomService | None = None


def get_zoom_service() -> ZoomService:
    global _zoom_service
    if _zoom_service is None:
        _zoom_service = ZoomService()
    return _zoom_service
