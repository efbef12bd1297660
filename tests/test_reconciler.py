"""Tests for event reconciliation between the store and the sync proxy."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from helpers import OTHER_USER_ID, USER_ID, FakeBackend, make_event, sign_in
from sqlmodel import Session, select

from intentive.auth.manager import AuthSessionManager
from intentive.calendar.feed import ChangeFeed
from intentive.calendar.proxy import SyncProxyClient
from intentive.calendar.store import EventStore
from intentive.calendar.sync import EventSyncReconciler
from intentive.calendar.window import SyncWindow
from intentive.core.errors import NotFoundOrForbidden, PersistError
from intentive.models import CalendarEvent, EventCreate, EventUpdate

DAY = date(2026, 3, 10)


@pytest.fixture(name="reconciler")
def reconciler_fixture(
    session: Session, sync_proxy: SyncProxyClient, manager: AuthSessionManager, feed: ChangeFeed
) -> EventSyncReconciler:
    return EventSyncReconciler(EventStore(session, feed), sync_proxy, manager)


def draft(title: str = "Dentist") -> EventCreate:
    return EventCreate(
        title=title,
        start_time=datetime(2026, 3, 10, 14, 0, tzinfo=UTC),
        end_time=datetime(2026, 3, 10, 15, 0, tzinfo=UTC),
    )


def add(session: Session, *events: CalendarEvent) -> None:
    for event in events:
        session.add(event)
    session.commit()


class TestListActive:
    """Tests for day listing."""

    @pytest.mark.asyncio
    async def test_returns_owned_events_overlapping_day(
        self, session: Session, reconciler: EventSyncReconciler
    ):
        add(
            session,
            make_event(
                title="Late flight",
                start_time=datetime(2026, 3, 9, 23, 0, tzinfo=UTC),
                end_time=datetime(2026, 3, 10, 1, 0, tzinfo=UTC),
            ),
            make_event(title="Standup"),
            make_event(title="Tomorrow", start_time=datetime(2026, 3, 11, 9, 0, tzinfo=UTC)),
            make_event(user_id=OTHER_USER_ID, title="Not mine"),
        )

        events = await reconciler.list_active(USER_ID, DAY)

        assert [e.title for e in events] == ["Late flight", "Standup"]

    @pytest.mark.asyncio
    async def test_conference_spanning_days_listed_each_day(
        self, session: Session, reconciler: EventSyncReconciler
    ):
        add(
            session,
            make_event(
                title="Conference",
                start_time=datetime(2026, 3, 9, 9, 0, tzinfo=UTC),
                end_time=datetime(2026, 3, 11, 17, 0, tzinfo=UTC),
            ),
        )

        for day in (date(2026, 3, 9), DAY, date(2026, 3, 11)):
            assert [e.title for e in await reconciler.list_active(USER_ID, day)] == ["Conference"]
        assert await reconciler.list_active(USER_ID, date(2026, 3, 12)) == []

    @pytest.mark.asyncio
    async def test_event_ending_at_midnight_touches_next_day(
        self, session: Session, reconciler: EventSyncReconciler
    ):
        add(
            session,
            make_event(
                title="Evening",
                start_time=datetime(2026, 3, 10, 22, 0, tzinfo=UTC),
                end_time=datetime(2026, 3, 11, 0, 0, tzinfo=UTC),
            ),
        )

        assert [e.title for e in await reconciler.list_active(USER_ID, date(2026, 3, 11))] == [
            "Evening"
        ]
        assert await reconciler.list_active(USER_ID, date(2026, 3, 12)) == []

    @pytest.mark.asyncio
    async def test_listing_matches_day_window(
        self, session: Session, reconciler: EventSyncReconciler
    ):
        """The stored query selects exactly the events the day window overlaps."""
        midnight = datetime(2026, 3, 10, 0, 0, tzinfo=UTC)
        spans = {
            "Ends at start of day": (midnight - timedelta(hours=2), midnight),
            "Ends just before day": (
                midnight - timedelta(hours=2),
                midnight - timedelta(milliseconds=1),
            ),
            "Starts at midnight": (midnight, midnight + timedelta(hours=1)),
            "Zero length": (midnight + timedelta(hours=12), midnight + timedelta(hours=12)),
            "Last millisecond": (
                midnight + timedelta(days=1) - timedelta(milliseconds=1),
                midnight + timedelta(days=1, hours=1),
            ),
            "Starts next midnight": (
                midnight + timedelta(days=1),
                midnight + timedelta(days=1, hours=1),
            ),
            "Whole week": (midnight - timedelta(days=3), midnight + timedelta(days=4)),
        }
        window = SyncWindow.for_day(DAY)
        expected = [
            title
            for title, (start, end) in sorted(spans.items(), key=lambda item: item[1][0])
            if window.overlaps(start, end)
        ]
        add(
            session,
            *(
                make_event(title=title, start_time=start, end_time=end)
                for title, (start, end) in spans.items()
            ),
        )

        events = await reconciler.list_active(USER_ID, DAY)

        assert [e.title for e in events] == expected
        assert "Ends just before day" not in expected
        assert "Starts next midnight" not in expected


class TestCreate:
    """Tests for create and the external push."""

    @pytest.mark.asyncio
    async def test_create_pushes_and_links(
        self, reconciler: EventSyncReconciler, manager: AuthSessionManager, backend: FakeBackend
    ):
        await sign_in(manager)

        event = await reconciler.create(USER_ID, draft())

        assert event.user_id == USER_ID
        assert event.google_event_id == "gcal-1"
        assert event.synced_at is not None
        pushed = backend.bodies["/api/sync/events"][0]
        assert pushed["id"] == str(event.id)
        assert pushed["title"] == "Dentist"

    @pytest.mark.asyncio
    async def test_push_failure_keeps_local_event(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        backend.push_status = 503

        event = await reconciler.create(USER_ID, draft())

        assert event.google_event_id is None
        stored = session.get(CalendarEvent, event.id)
        assert stored is not None
        assert stored.google_event_id is None

    @pytest.mark.asyncio
    async def test_push_timeout_keeps_local_event(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        backend.proxy_timeout = True

        event = await reconciler.create(USER_ID, draft())

        assert event.google_event_id is None
        assert event.synced_at is None
        assert session.get(CalendarEvent, event.id) is not None

    @pytest.mark.asyncio
    async def test_not_pushed_without_session(
        self, reconciler: EventSyncReconciler, backend: FakeBackend
    ):
        event = await reconciler.create(USER_ID, draft())

        assert event.google_event_id is None
        assert backend.count("/api/sync/events") == 0

    @pytest.mark.asyncio
    async def test_not_pushed_for_another_users_session(
        self, reconciler: EventSyncReconciler, manager: AuthSessionManager, backend: FakeBackend
    ):
        await sign_in(manager)

        event = await reconciler.create(OTHER_USER_ID, draft())

        assert event.user_id == OTHER_USER_ID
        assert backend.count("/api/sync/events") == 0


class TestUpdate:
    """Tests for ownership-scoped updates."""

    @pytest.mark.asyncio
    async def test_update_owned_event(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        sample_event: CalendarEvent,
        backend: FakeBackend,
    ):
        await reconciler.update(USER_ID, sample_event.id, EventUpdate(title="Renamed"))

        session.refresh(sample_event)
        assert sample_event.title == "Renamed"
        assert sample_event.description == "Quarterly planning"
        assert backend.count("/api/sync/events") == 0

    @pytest.mark.asyncio
    async def test_update_other_users_event_is_not_found(
        self, session: Session, reconciler: EventSyncReconciler, other_user_event: CalendarEvent
    ):
        with pytest.raises(NotFoundOrForbidden):
            await reconciler.update(USER_ID, other_user_event.id, EventUpdate(title="Mine now"))

        session.refresh(other_user_event)
        assert other_user_event.title == "Someone Else's Event"

    @pytest.mark.asyncio
    async def test_empty_patch_still_checks_ownership(
        self, reconciler: EventSyncReconciler, other_user_event: CalendarEvent
    ):
        with pytest.raises(NotFoundOrForbidden):
            await reconciler.update(USER_ID, other_user_event.id, EventUpdate())

    @pytest.mark.asyncio
    async def test_patch_ending_before_stored_start_is_persist_error(
        self, session: Session, reconciler: EventSyncReconciler, sample_event: CalendarEvent
    ):
        patch = EventUpdate(end_time=datetime(2026, 3, 10, 8, 0, tzinfo=UTC))

        with pytest.raises(PersistError):
            await reconciler.update(USER_ID, sample_event.id, patch)

        session.refresh(sample_event)
        assert sample_event.end_time == datetime(2026, 3, 10, 9, 30)

    @pytest.mark.asyncio
    async def test_update_missing_event(self, reconciler: EventSyncReconciler):
        with pytest.raises(NotFoundOrForbidden):
            await reconciler.update(USER_ID, uuid4(), EventUpdate(title="Ghost"))


class TestDelete:
    """Tests for delete ordering and ownership."""

    @pytest.mark.asyncio
    async def test_external_copy_removed_before_local_row(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        event = make_event(google_event_id="gcal-9")
        add(session, event)
        event_id = event.id
        seen_row_during_external_delete = []

        def check_local_row(path_id: str):
            statement = select(CalendarEvent).where(CalendarEvent.id == UUID(path_id))
            seen_row_during_external_delete.append(session.exec(statement).first() is not None)

        backend.on_delete = check_local_row

        await reconciler.delete(USER_ID, event_id)

        assert seen_row_during_external_delete == [True]
        session.expire_all()
        assert session.get(CalendarEvent, event_id) is None

    @pytest.mark.asyncio
    async def test_external_failure_still_deletes_locally(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        backend.delete_status = 500
        event = make_event(google_event_id="gcal-9")
        add(session, event)
        event_id = event.id

        await reconciler.delete(USER_ID, event_id)

        session.expire_all()
        assert session.get(CalendarEvent, event_id) is None

    @pytest.mark.asyncio
    async def test_external_timeout_still_deletes_locally(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        backend.proxy_timeout = True
        event = make_event(google_event_id="gcal-9")
        add(session, event)
        event_id = event.id

        await reconciler.delete(USER_ID, event_id)

        assert backend.count(f"/api/sync/events/{event_id}", "DELETE") == 1
        session.expire_all()
        assert session.get(CalendarEvent, event_id) is None

    @pytest.mark.asyncio
    async def test_unlinked_event_skips_external_delete(
        self,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        sample_event: CalendarEvent,
        backend: FakeBackend,
    ):
        await sign_in(manager)

        await reconciler.delete(USER_ID, sample_event.id)

        assert not any(method == "DELETE" for method, _ in backend.requests)

    @pytest.mark.asyncio
    async def test_delete_other_users_event_is_not_found(
        self,
        session: Session,
        reconciler: EventSyncReconciler,
        manager: AuthSessionManager,
        backend: FakeBackend,
    ):
        await sign_in(manager)
        event = make_event(user_id=OTHER_USER_ID, google_event_id="gcal-theirs")
        add(session, event)
        event_id = event.id

        with pytest.raises(NotFoundOrForbidden):
            await reconciler.delete(USER_ID, event_id)

        assert not any(method == "DELETE" for method, _ in backend.requests)
        session.expire_all()
        assert session.get(CalendarEvent, event_id) is not None


class TestSubscribeToChanges:
    """Tests for live refresh on writes."""

    @pytest.mark.asyncio
    async def test_write_triggers_refresh_with_new_event(
        self, reconciler: EventSyncReconciler
    ):
        lists = []
        refreshed = asyncio.Event()

        async def on_change():
            lists.append([e.title for e in await reconciler.list_active(USER_ID, DAY)])
            refreshed.set()

        subscription = reconciler.subscribe_to_changes(USER_ID, on_change)
        await reconciler.create(USER_ID, draft("Lunch"))
        await asyncio.wait_for(refreshed.wait(), timeout=1)

        assert lists[0] == ["Lunch"]
        subscription.close()

    @pytest.mark.asyncio
    async def test_other_users_writes_do_not_refresh(
        self, reconciler: EventSyncReconciler
    ):
        calls = []

        async def on_change():
            calls.append(1)

        subscription = reconciler.subscribe_to_changes(USER_ID, on_change)
        await reconciler.create(OTHER_USER_ID, draft())
        for _ in range(5):
            await asyncio.sleep(0)

        assert calls == []
        subscription.close()

    @pytest.mark.asyncio
    async def test_sign_out_tears_down_subscription(
        self, reconciler: EventSyncReconciler, manager: AuthSessionManager
    ):
        await sign_in(manager)

        async def on_change():
            pass

        subscription = reconciler.subscribe_to_changes(USER_ID, on_change)
        await manager.sign_out()
        await asyncio.wait_for(subscription.wait_closed(), timeout=1)

        assert subscription.closed
