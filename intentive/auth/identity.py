"""Backend identity service client.

Signs users in with a Google ID token, keeps the resulting backend session
fresh, and notifies listeners whenever the session changes. Talks to a
GoTrue-compatible ``/auth/v1`` REST API.
"""
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Literal

import httpx

from intentive.core.config import Settings
from intentive.core.errors import IdentityServiceError
from intentive.models import IdentitySession, IdentityUser

logger = logging.getLogger(__name__)

AuthEvent = Literal["SIGNED_IN", "TOKEN_REFRESHED", "SIGNED_OUT"]
AuthListener = Callable[[AuthEvent, IdentitySession | None], None]


class ListenerHandle:
    """Returned by listener registrations; ``close()`` unregisters."""

    def __init__(self, listeners: list, callback):
        self._listeners = listeners
        self._callback = callback

    def close(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class IdentityClient:
    """Client for the backend identity service, holding the current session."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = settings.identity_url.rstrip("/")
        self.anon_key = settings.identity_anon_key
        self.timeout = settings.http_timeout_seconds
        self._transport = transport
        self._listeners: list[AuthListener] = []
        self.current_session: IdentitySession | None = None

    def on_auth_state_change(self, callback: AuthListener) -> ListenerHandle:
        self._listeners.append(callback)
        return ListenerHandle(self._listeners, callback)

    def _emit(self, event: AuthEvent, session: IdentitySession | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error(f"Auth listener failed on {event}: {e}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"apikey": self.anon_key},
            transport=self._transport,
        )

    async def _post(self, path: str, *, params=None, json=None, bearer_token=None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {bearer_token}"} if bearer_token else None
        try:
            async with self._client() as client:
                response = await client.post(path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise IdentityServiceError(f"POST {path} failed: {e}") from e
        if not response.is_success:
            raise IdentityServiceError(
                f"POST {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def sign_in_with_id_token(self, provider: str, id_token: str) -> IdentitySession:
        """Exchange a provider ID token for a backend session.

        A response without a user is rejected before it replaces the
        current session.
        """
        response = await self._post(
            "/auth/v1/token",
            params={"grant_type": "id_token"},
            json={"provider": provider, "id_token": id_token},
        )
        session = _parse_session(response)
        if session.user is None:
            raise IdentityServiceError("Identity response did not include a user")
        self.current_session = session
        self._emit("SIGNED_IN", session)
        return session

    async def refresh_session(self) -> IdentitySession | None:
        """Refresh the current session.

        A 400/401 means the refresh token was revoked or reused: the
        session is treated as invalidated and dropped. Other failures
        propagate and leave the session untouched.
        """
        current = self.current_session
        if current is None or not current.refresh_token:
            return None
        try:
            response = await self._post(
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": current.refresh_token},
            )
        except IdentityServiceError as e:
            if e.status_code in (400, 401):
                logger.warning(f"Session invalidated by identity service: {e}")
                self._drop_session()
                return None
            raise
        session = _parse_session(response)
        self.current_session = session
        self._emit("TOKEN_REFRESHED", session)
        return session

    async def refresh_if_expiring(self, margin: timedelta) -> IdentitySession | None:
        current = self.current_session
        if current is None or current.expires_at is None:
            return current
        if current.expires_at - datetime.now(UTC) > margin:
            return current
        logger.info("Backend session close to expiry, refreshing")
        return await self.refresh_session()

    async def sign_out(self) -> None:
        """Invalidate the backend session.

        The local session is dropped even if the identity service refuses,
        so the app never stays signed in on a half-revoked session.
        """
        current = self.current_session
        if current is None:
            return
        try:
            await self._post("/auth/v1/logout", bearer_token=current.access_token)
        finally:
            self._drop_session()

    def _drop_session(self) -> None:
        if self.current_session is None:
            return
        self.current_session = None
        self._emit("SIGNED_OUT", None)


def _parse_session(response: httpx.Response) -> IdentitySession:
    try:
        data = response.json()
    except ValueError as e:
        raise IdentityServiceError(f"Invalid identity response: {e}") from e
    # Some deployments nest the token fields under "session"
    token_data = data.get("session") or data
    access_token = token_data.get("access_token")
    if not access_token:
        raise IdentityServiceError("Identity response did not include an access token")

    user_data = data.get("user") or token_data.get("user")
    user = None
    if user_data and user_data.get("id"):
        user = IdentityUser(id=user_data["id"], email=user_data.get("email"))

    expires_at = None
    if token_data.get("expires_at"):
        expires_at = datetime.fromtimestamp(token_data["expires_at"], UTC)
    elif token_data.get("expires_in"):
        expires_at = datetime.now(UTC) + timedelta(seconds=token_data["expires_in"])

    return IdentitySession(
        user=user,
        access_token=access_token,
        refresh_token=token_data.get("refresh_token"),
        expires_at=expires_at,
    )
