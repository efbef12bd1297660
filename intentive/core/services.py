"""Process-wide service instances and their FastAPI dependencies.

The app has exactly one signed-in user at a time, so the auth manager,
its HTTP clients and the change feed are module-level singletons, like
the database engine. Routes receive them through the ``get_*``
dependencies so tests can swap them with ``app.dependency_overrides``.
"""
from fastapi import Depends, HTTPException
from sqlmodel import Session

from intentive.auth.identity import IdentityClient
from intentive.auth.manager import AuthSessionManager
from intentive.auth.prompt import RedirectPrompt
from intentive.calendar.feed import ChangeFeed
from intentive.calendar.proxy import SyncProxyClient
from intentive.calendar.store import EventStore
from intentive.calendar.sync import EventSyncReconciler
from intentive.core.config import settings
from intentive.core.database import get_session
from intentive.models import AuthSession

change_feed = ChangeFeed()
identity_client = IdentityClient(settings)
sync_proxy = SyncProxyClient(settings)
auth_manager = AuthSessionManager(settings, identity_client, sync_proxy)
redirect_prompt = RedirectPrompt(timeout=settings.sign_in_timeout_seconds)

# Live event streams must not outlive the session they were opened for
auth_manager.on_session_change(
    lambda session: change_feed.close_stale(session.user_id if session else None)
)


def get_auth_manager() -> AuthSessionManager:
    return auth_manager


def get_redirect_prompt() -> RedirectPrompt:
    return redirect_prompt


def get_change_feed() -> ChangeFeed:
    return change_feed


def get_sync_proxy() -> SyncProxyClient:
    return sync_proxy


def get_current_session(auth: AuthSessionManager = Depends(get_auth_manager)) -> AuthSession:
    """Dependency requiring a signed-in user."""
    if auth.session is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return auth.session


def get_reconciler(
    session: Session = Depends(get_session),
    auth: AuthSessionManager = Depends(get_auth_manager),
    proxy: SyncProxyClient = Depends(get_sync_proxy),
    feed: ChangeFeed = Depends(get_change_feed),
) -> EventSyncReconciler:
    return EventSyncReconciler(EventStore(session, feed), proxy, auth)
