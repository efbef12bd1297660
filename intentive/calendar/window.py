"""UTC day windows used to select the events active on a calendar day."""
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive ``[start, end]`` range covering one UTC calendar day.

    The end bound is 23:59:59.999, the last millisecond of the day, so an
    event ending exactly at the next midnight does not leak into it.
    """

    start: datetime
    end: datetime

    @classmethod
    def for_day(cls, day: date | datetime) -> "SyncWindow":
        """Build the window for ``day``.

        A datetime is normalized to UTC before its date is taken, so the
        same instant always maps to the same window regardless of the
        caller's timezone.
        """
        if isinstance(day, datetime):
            day = to_utc(day).date()
        start = datetime.combine(day, time.min, tzinfo=UTC)
        end = start + timedelta(days=1) - timedelta(milliseconds=1)
        return cls(start=start, end=end)

    def overlaps(self, start_time: datetime, end_time: datetime) -> bool:
        """Same-day, multi-day and boundary-spanning events all count."""
        return to_utc(start_time) <= self.end and to_utc(end_time) >= self.start
