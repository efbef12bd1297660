"""Event store: CRUD and overlap queries over the events table.

Every read and write that takes a ``user_id`` applies it inside the SQL
statement itself, so a caller can never observe or touch a row it does
not own, and "missing" and "not yours" look identical.
"""
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from intentive.calendar.feed import ChangeFeed, ChangeNotification
from intentive.calendar.window import SyncWindow
from intentive.models import CalendarEvent

logger = logging.getLogger(__name__)


class EventStore:
    """Event table access bound to one database session."""

    def __init__(self, session: Session, feed: ChangeFeed | None = None):
        self.session = session
        self.feed = feed

    def insert(self, event: CalendarEvent) -> CalendarEvent:
        try:
            self.session.add(event)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(event)
        self._notify("INSERT", event.user_id, event.id)
        return event

    def get_owned(self, user_id: str, event_id: UUID) -> CalendarEvent | None:
        statement = (
            select(CalendarEvent)
            .where(CalendarEvent.id == event_id)
            .where(CalendarEvent.user_id == user_id)
        )
        return self.session.exec(statement).first()

    def list_overlapping(self, user_id: str, window: SyncWindow) -> list[CalendarEvent]:
        """Events of ``user_id`` active at any point inside ``window``, by start time."""
        statement = (
            select(CalendarEvent)
            .where(CalendarEvent.user_id == user_id)
            .where(CalendarEvent.start_time <= window.end)  # starts before day ends
            .where(CalendarEvent.end_time >= window.start)  # ends after day starts
            .order_by(CalendarEvent.start_time)
        )
        return list(self.session.exec(statement).all())

    def update_owned(self, user_id: str, event_id: UUID, values: dict) -> int:
        """Apply ``values`` to the row matching both id and owner.

        Returns the number of rows changed (0 or 1).
        """
        statement = (
            update(CalendarEvent)
            .where(CalendarEvent.id == event_id)
            .where(CalendarEvent.user_id == user_id)
            .values(**values, updated_at=datetime.now(UTC))
        )
        rowcount = self._execute(statement)
        if rowcount:
            self._notify("UPDATE", user_id, event_id)
        return rowcount

    def delete_owned(self, user_id: str, event_id: UUID) -> int:
        statement = (
            delete(CalendarEvent)
            .where(CalendarEvent.id == event_id)
            .where(CalendarEvent.user_id == user_id)
        )
        rowcount = self._execute(statement)
        if rowcount:
            self._notify("DELETE", user_id, event_id)
        return rowcount

    def set_google_event_id(
        self, user_id: str, event_id: UUID, google_event_id: str, synced_at: datetime
    ) -> int:
        """Record the external calendar mapping after a successful push."""
        return self.update_owned(
            user_id,
            event_id,
            {"google_event_id": google_event_id, "synced_at": synced_at},
        )

    def _execute(self, statement) -> int:
        try:
            result = self.session.exec(statement)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return result.rowcount

    def _notify(self, kind: str, user_id: str, event_id: UUID) -> None:
        logger.debug(f"{kind} on event {event_id} for user {user_id}")
        if self.feed is not None:
            self.feed.publish(ChangeNotification(kind=kind, user_id=user_id, event_id=event_id))
