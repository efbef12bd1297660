"""Event synchronization between the event store and the external calendar.

The store is the source of truth. The external calendar is a best-effort
mirror reached through the backend sync proxy:

    - create: write locally first, then push; a failed push leaves the
      event without ``google_event_id`` and is only logged.
    - delete: remove the external copy first when one is linked (failure
      logged), then delete locally.
    - update: local only. Edits are not propagated to the external
      calendar.

Live views are kept fresh by re-running ``list_active`` whenever the
change feed reports anything for the user; notifications are never
applied incrementally.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from intentive.auth.manager import AuthSessionManager
from intentive.calendar.feed import ChangeStream
from intentive.calendar.proxy import SyncProxyClient
from intentive.calendar.store import EventStore
from intentive.calendar.window import SyncWindow
from intentive.core.errors import FetchError, NotFoundOrForbidden, PersistError, SyncProxyError
from intentive.models import CalendarEvent, EventCreate, EventRead, EventUpdate

logger = logging.getLogger(__name__)


class ChangeSubscription:
    """Consumes a change stream and coalesces bursts into trailing refreshes.

    At most one ``on_change`` call runs at a time. Notifications arriving
    while a refresh is in flight collapse into exactly one more refresh
    after it finishes.
    """

    def __init__(self, stream: ChangeStream, on_change: Callable[[], Awaitable[None]]):
        self.user_id = stream.user_id
        self._stream = stream
        self._on_change = on_change
        self._pending = False
        self._refresh: asyncio.Task | None = None
        self._task = asyncio.create_task(self._consume())

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def _consume(self) -> None:
        try:
            async for _ in self._stream:
                self._pending = True
                if self._refresh is None or self._refresh.done():
                    self._refresh = asyncio.create_task(self._drain())
        finally:
            if self._refresh is not None and not self._refresh.done():
                self._refresh.cancel()

    async def _drain(self) -> None:
        while self._pending:
            self._pending = False
            try:
                await self._on_change()
            except Exception as e:
                logger.error(f"Change refresh failed for user {self.user_id}: {e}")

    async def wait_closed(self) -> None:
        """Wait until the subscription is torn down (by close or by the feed)."""
        await asyncio.shield(self._task)

    def close(self) -> None:
        self._stream.close()


class EventSyncReconciler:
    """Keeps the event store and the external calendar consistent."""

    def __init__(self, store: EventStore, proxy: SyncProxyClient, auth: AuthSessionManager):
        self.store = store
        self.proxy = proxy
        self.auth = auth

    async def list_active(self, user_id: str, day: date | datetime) -> list[CalendarEvent]:
        """Events of ``user_id`` active during the UTC calendar day ``day``."""
        window = SyncWindow.for_day(day)
        try:
            return self.store.list_overlapping(user_id, window)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch events for {window.start.date()}: {e}")
            raise FetchError("Could not load events") from e

    async def create(self, user_id: str, draft: EventCreate) -> CalendarEvent:
        """Persist ``draft`` for ``user_id``, then mirror it externally.

        The local write is the durability boundary: once it commits, the
        event is returned even if the external push fails.
        """
        event = CalendarEvent(**draft.model_dump(), user_id=user_id)
        try:
            event = self.store.insert(event)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create event '{draft.title}': {e}")
            raise PersistError("Could not save event") from e

        bearer_token = self._bearer_token(user_id)
        if bearer_token is None:
            logger.warning(f"No session for user {user_id}, event {event.id} not pushed")
            return event

        try:
            google_event_id = await self.proxy.push_event(bearer_token, EventRead.model_validate(event))
        except SyncProxyError as e:
            logger.warning(f"External push failed for event {event.id}: {e}")
            return event

        try:
            self.store.set_google_event_id(user_id, event.id, google_event_id, datetime.now(UTC))
        except SQLAlchemyError as e:
            logger.error(f"Failed to record external id {google_event_id} for event {event.id}: {e}")
            return event
        logger.info(f"Pushed event {event.id} as {google_event_id}")
        return event

    async def update(self, user_id: str, event_id: UUID, patch: EventUpdate) -> None:
        """Apply ``patch`` to an event owned by ``user_id``.

        Local only; see the module docstring.
        """
        values = patch.model_dump(exclude_unset=True)
        if not values:
            # Still enforce ownership for empty patches
            if self._get_owned(user_id, event_id) is None:
                raise NotFoundOrForbidden(f"Event {event_id} not found")
            return
        try:
            changed = self.store.update_owned(user_id, event_id, values)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update event {event_id}: {e}")
            raise PersistError("Could not update event") from e
        if not changed:
            raise NotFoundOrForbidden(f"Event {event_id} not found")

    async def delete(self, user_id: str, event_id: UUID) -> None:
        """Delete an event owned by ``user_id``, removing the external copy first."""
        event = self._get_owned(user_id, event_id)
        if event is not None and event.google_event_id:
            await self._delete_external(user_id, event)

        try:
            deleted = self.store.delete_owned(user_id, event_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete event {event_id}: {e}")
            raise PersistError("Could not delete event") from e
        if not deleted:
            raise NotFoundOrForbidden(f"Event {event_id} not found")

    def subscribe_to_changes(
        self, user_id: str, on_change: Callable[[], Awaitable[None]]
    ) -> ChangeSubscription:
        """Call ``on_change`` whenever ``user_id``'s events change.

        The returned subscription must be closed when the session ends;
        the feed also closes it on sign-out or user switch.
        """
        if self.store.feed is None:
            raise RuntimeError("Event store has no change feed")
        return ChangeSubscription(self.store.feed.subscribe(user_id), on_change)

    async def _delete_external(self, user_id: str, event: CalendarEvent) -> None:
        bearer_token = self._bearer_token(user_id)
        if bearer_token is None:
            logger.warning(f"No session for user {user_id}, external copy of {event.id} kept")
            return
        try:
            await self.proxy.delete_event(bearer_token, event.id, event.google_event_id)
            logger.info(f"Deleted external event {event.google_event_id}")
        except SyncProxyError as e:
            logger.warning(f"External delete failed for event {event.id}: {e}")

    def _get_owned(self, user_id: str, event_id: UUID) -> CalendarEvent | None:
        try:
            return self.store.get_owned(user_id, event_id)
        except SQLAlchemyError as e:
            raise FetchError("Could not load event") from e

    def _bearer_token(self, user_id: str) -> str | None:
        session = self.auth.session
        if session is None or session.user_id != user_id:
            return None
        return session.bearer_token
