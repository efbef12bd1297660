"""Shared test fixtures."""

import asyncio
from contextlib import nullcontext

import pytest
from fastapi.testclient import TestClient
from helpers import OTHER_USER_ID, FakeBackend, make_event, sign_in
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from intentive.auth.identity import IdentityClient
from intentive.auth.manager import AuthSessionManager
from intentive.auth.prompt import RedirectPrompt
from intentive.calendar.feed import ChangeFeed
from intentive.calendar.proxy import SyncProxyClient
from intentive.core.config import Settings
from intentive.core.database import get_session, get_session_factory
from intentive.core.services import (
    get_auth_manager,
    get_change_feed,
    get_redirect_prompt,
    get_sync_proxy,
)
from intentive.main import app
from intentive.models import CalendarEvent


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="test_settings")
def settings_fixture() -> Settings:
    return Settings(
        google_client_id="client-123.apps.googleusercontent.com",
        google_redirect_uri="http://localhost:8000/auth/callback",
        google_token_endpoint="https://oauth2.test/token",
        identity_url="https://identity.test",
        identity_anon_key="anon-key",
        backend_url="https://backend.test",
    )


@pytest.fixture(name="backend")
def backend_fixture() -> FakeBackend:
    return FakeBackend()


@pytest.fixture(name="identity")
def identity_fixture(test_settings: Settings, backend: FakeBackend) -> IdentityClient:
    return IdentityClient(test_settings, transport=backend.transport)


@pytest.fixture(name="sync_proxy")
def sync_proxy_fixture(test_settings: Settings, backend: FakeBackend) -> SyncProxyClient:
    return SyncProxyClient(test_settings, transport=backend.transport)


@pytest.fixture(name="feed")
def feed_fixture():
    feed = ChangeFeed()
    yield feed
    feed.close_all()


@pytest.fixture(name="manager")
def manager_fixture(
    test_settings: Settings,
    identity: IdentityClient,
    sync_proxy: SyncProxyClient,
    backend: FakeBackend,
    feed: ChangeFeed,
):
    """Auth manager wired like the app: session changes close stale streams."""
    manager = AuthSessionManager(test_settings, identity, sync_proxy, transport=backend.transport)
    manager.on_session_change(
        lambda session: feed.close_stale(session.user_id if session else None)
    )
    yield manager
    manager.close()


@pytest.fixture(name="client")
def client_fixture(
    session: Session,
    manager: AuthSessionManager,
    sync_proxy: SyncProxyClient,
    feed: ChangeFeed,
):
    """Create a test client with the test database session and services."""
    prompt = RedirectPrompt(timeout=5)

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_session_factory] = lambda: (lambda: nullcontext(session))
    app.dependency_overrides[get_auth_manager] = lambda: manager
    app.dependency_overrides[get_redirect_prompt] = lambda: prompt
    app.dependency_overrides[get_sync_proxy] = lambda: sync_proxy
    app.dependency_overrides[get_change_feed] = lambda: feed
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="signed_in_client")
def signed_in_client_fixture(client: TestClient, manager: AuthSessionManager):
    """Test client with ``USER_ID`` signed in."""
    asyncio.run(sign_in(manager))
    return client


@pytest.fixture(name="sample_event")
def sample_event_fixture(session: Session) -> CalendarEvent:
    """Create a sample event owned by ``USER_ID``."""
    event = make_event(title="Test Event", description="Quarterly planning")
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@pytest.fixture(name="other_user_event")
def other_user_event_fixture(session: Session) -> CalendarEvent:
    """Create an event owned by another user."""
    event = make_event(user_id=OTHER_USER_ID, title="Someone Else's Event")
    session.add(event)
    session.commit()
    session.refresh(event)
    return event
