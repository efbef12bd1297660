"""Backend sync proxy client.

The backend holds the user's provider tokens and talks to the external
calendar on the app's behalf. Every call is authenticated with the
backend bearer token from the current session.
"""
import logging
from datetime import datetime
from uuid import UUID

import httpx

from intentive.core.config import Settings
from intentive.core.errors import SyncProxyError
from intentive.models import EventRead

logger = logging.getLogger(__name__)


class SyncProxyClient:
    """Thin httpx wrapper over the ``/api/sync`` endpoints."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = settings.backend_url.rstrip("/")
        self.timeout = settings.http_timeout_seconds
        self._transport = transport

    def _client(self, bearer_token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {bearer_token}"},
            transport=self._transport,
        )

    async def _send(self, bearer_token: str, method: str, path: str, body: dict) -> httpx.Response:
        try:
            async with self._client(bearer_token) as client:
                response = await client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise SyncProxyError(f"{method} {path} failed: {e}") from e
        if not response.is_success:
            raise SyncProxyError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def store_tokens(
        self,
        bearer_token: str,
        user_id: str,
        access_token: str | None,
        refresh_token: str | None,
        expires_at: datetime,
    ) -> None:
        """Hand the provider tokens to the backend for later calendar pushes."""
        await self._send(
            bearer_token,
            "POST",
            "/api/sync/tokens",
            {
                "userId": user_id,
                "accessToken": access_token,
                "refreshToken": refresh_token,
                "expiresAt": expires_at.isoformat(),
            },
        )
        logger.info(f"Stored provider tokens for user {user_id}")

    async def push_event(self, bearer_token: str, event: EventRead) -> str:
        """Create ``event`` on the external calendar. Returns its external id."""
        response = await self._send(
            bearer_token, "POST", "/api/sync/events", event.model_dump(mode="json")
        )
        try:
            data = response.json()
        except ValueError as e:
            raise SyncProxyError(f"Invalid push response: {e}") from e
        google_event_id = data.get("googleEventId") if isinstance(data, dict) else None
        if not google_event_id:
            raise SyncProxyError("Push response did not include googleEventId")
        return google_event_id

    async def delete_event(self, bearer_token: str, event_id: UUID, google_event_id: str) -> None:
        await self._send(
            bearer_token,
            "DELETE",
            f"/api/sync/events/{event_id}",
            {"googleEventId": google_event_id},
        )
