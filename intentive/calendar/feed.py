"""Row-level change notifications for the events table.

The store publishes one notification per committed mutation. Consumers
treat a notification purely as "something changed for this user" and
re-query; they never patch their view from the notification contents.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class ChangeNotification:
    """A single insert, update or delete on a user's events."""
    kind: Literal["INSERT", "UPDATE", "DELETE"]
    user_id: str
    event_id: UUID


class ChangeStream:
    """Lazy, infinite async iterator of one user's notifications.

    The stream cannot be restarted: once closed, iteration ends and every
    later iteration ends immediately.
    """

    def __init__(self, feed: "ChangeFeed", user_id: str, loop: asyncio.AbstractEventLoop):
        self.user_id = user_id
        self._feed = feed
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeNotification:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def _deliver(self, item) -> bool:
        # Publishers may run on worker threads; hand off to the owning loop.
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Owning loop is gone
            self._closed = True
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._discard(self)
        self._deliver(_CLOSED)


class ChangeFeed:
    """In-process fan-out of change notifications, filtered by user."""

    def __init__(self):
        self._streams: set[ChangeStream] = set()
        self._lock = threading.Lock()

    def subscribe(self, user_id: str) -> ChangeStream:
        """Open a stream for ``user_id``. Must be called from a running loop."""
        stream = ChangeStream(self, user_id, asyncio.get_running_loop())
        with self._lock:
            self._streams.add(stream)
        logger.debug(f"Change stream opened for user {user_id}")
        return stream

    def publish(self, notification: ChangeNotification) -> None:
        with self._lock:
            targets = [s for s in self._streams if s.user_id == notification.user_id]
        for stream in targets:
            if not stream._deliver(notification):
                self._discard(stream)

    def close_stale(self, current_user_id: str | None) -> int:
        """Close every stream not owned by ``current_user_id``.

        Called on sign-out (``None`` closes everything) and on user switch.
        Returns the number of streams closed.
        """
        with self._lock:
            stale = [s for s in self._streams if s.user_id != current_user_id]
        for stream in stale:
            stream.close()
        if stale:
            logger.info(f"Closed {len(stale)} stale change stream(s)")
        return len(stale)

    def close_all(self) -> None:
        self.close_stale(None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._streams)

    def _discard(self, stream: ChangeStream) -> None:
        with self._lock:
            self._streams.discard(stream)
