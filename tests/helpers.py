"""Test doubles and builders shared by the test modules."""

import json
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs
from uuid import uuid4

import httpx

from intentive.auth.manager import AuthSessionManager
from intentive.models import CalendarEvent

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FakeBackend:
    """Scripted Google token endpoint, identity service and sync proxy.

    Each endpoint's status can be flipped per test and every request is
    recorded as ``(method, path)`` so tests can count network calls.
    ``proxy_timeout`` makes sync proxy event calls time out.
    """

    def __init__(self):
        self.requests: list[tuple[str, str]] = []
        self.bodies: dict[str, list] = {}
        self.user_id = USER_ID
        self.token_status = 200
        self.token_payload = {
            "access_token": "google-access",
            "refresh_token": "google-refresh",
            "id_token": "google-id-token",
            "expires_in": 3599,
        }
        self.sign_in_status = 200
        self.return_user = True
        self.refresh_status = 200
        self.logout_status = 204
        self.store_tokens_status = 200
        self.push_status = 200
        self.delete_status = 204
        self.on_delete = None
        self.proxy_timeout = False
        self._pushed = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str, method: str | None = None) -> int:
        return sum(
            1 for m, p in self.requests if p == path and (method is None or m == method)
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if path == "/token":
            self.bodies.setdefault(path, []).append(parse_qs(request.content.decode()))
            return httpx.Response(self.token_status, json=self.token_payload)

        if path == "/auth/v1/token":
            grant_type = request.url.params["grant_type"]
            status = self.sign_in_status if grant_type == "id_token" else self.refresh_status
            if status >= 400:
                return httpx.Response(status, json={"error": "invalid_grant"})
            return httpx.Response(status, json=self._identity_payload(grant_type))

        if path == "/auth/v1/logout":
            return httpx.Response(self.logout_status)

        if self.proxy_timeout and path.startswith("/api/sync/events"):
            raise httpx.ReadTimeout("timed out", request=request)

        if path == "/api/sync/tokens":
            self.bodies.setdefault(path, []).append(json.loads(request.content))
            return httpx.Response(self.store_tokens_status, json={"ok": True})

        if path == "/api/sync/events" and request.method == "POST":
            self.bodies.setdefault(path, []).append(json.loads(request.content))
            if self.push_status >= 400:
                return httpx.Response(self.push_status, json={"error": "calendar down"})
            self._pushed += 1
            return httpx.Response(200, json={"googleEventId": f"gcal-{self._pushed}"})

        if path.startswith("/api/sync/events/") and request.method == "DELETE":
            if self.on_delete is not None:
                self.on_delete(path.rsplit("/", 1)[-1])
            return httpx.Response(self.delete_status)

        return httpx.Response(404)

    def _identity_payload(self, grant_type: str) -> dict:
        suffix = "refreshed" if grant_type == "refresh_token" else "issued"
        payload = {
            "access_token": f"bearer-{self.user_id}-{suffix}",
            "refresh_token": f"refresh-{self.user_id}",
            "expires_in": 3600,
        }
        if self.return_user:
            payload["user"] = {"id": self.user_id, "email": f"{self.user_id}@example.com"}
        return payload


async def sign_in(manager: AuthSessionManager, code: str = "auth-code-1") -> None:
    """Complete a sign-in as if the provider had redirected with ``code``."""
    request = manager.authorization_request or manager.build_authorization_request()
    await manager.handle_redirect_callback(code, request.code_verifier)


def make_event(user_id: str = USER_ID, **overrides) -> CalendarEvent:
    start = overrides.pop("start_time", datetime(2026, 3, 10, 9, 0, tzinfo=UTC))
    values = {
        "title": "Standup",
        "start_time": start,
        "end_time": start + timedelta(minutes=30),
    }
    values.update(overrides)
    return CalendarEvent(id=uuid4(), user_id=user_id, **values)

