"""Calendar event model and its request/response schemas.

This module defines the CalendarEvent table, the user-owned scheduled item
that the app mirrors from the backend event store, together with the
schemas used to create, patch and return events over the API.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import field_validator, model_validator
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from intentive.calendar.window import to_utc


class EventBase(SQLModel):
    """Fields a user can set on an event."""
    title: str = Field(min_length=1)
    description: str | None = None
    start_time: datetime = Field(index=True)
    end_time: datetime
    all_day: bool = Field(default=False)
    color: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class CalendarEvent(EventBase, table=True):
    """A user-owned scheduled item.

    The local row is authoritative. The external calendar copy is a
    best-effort mirror linked through ``google_event_id``, which stays
    empty until a push succeeds and is never cleared to mean "deleted".

    Attributes:
        id: Unique identifier (UUID), stable for the life of the event.
        user_id: Owner, the backend identity service's user id.
        google_event_id: External calendar event id, set after a
            successful push.
        title: Event title.
        description: Optional free-text description.
        start_time: When the event starts (UTC).
        end_time: When the event ends (UTC), never before start_time.
        all_day: Whether the event spans whole days.
        color: Optional display color.
        synced_at: When the event was last pushed to the external
            calendar, if ever.
        created_at: When the row was written.
        updated_at: When the row was last changed.
    """
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("end_time >= start_time", name="ck_events_end_after_start"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True)
    google_event_id: str | None = Field(default=None, index=True)
    synced_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class EventCreate(EventBase):
    """Draft for a new event. The owner is attached by the server."""

    @model_validator(mode="after")
    def _check_order(self) -> "EventCreate":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventUpdate(SQLModel):
    """Partial update. Identity and ownership fields are not patchable."""
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    all_day: bool | None = None
    color: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_required_not_null(self) -> "EventUpdate":
        for name in ("title", "start_time", "end_time", "all_day"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    @model_validator(mode="after")
    def _check_order(self) -> "EventUpdate":
        if self.start_time and self.end_time and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventRead(EventBase):
    """Event as returned by the API and pushed to the sync proxy."""
    id: UUID
    user_id: str
    google_event_id: str | None = None
    synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("synced_at", "created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None
