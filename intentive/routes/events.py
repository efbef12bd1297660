"""Event routes: day listing, create/update/delete and the live day stream."""
import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, WebSocket, status
from sqlmodel import Session

from intentive.auth.manager import AuthSessionManager
from intentive.calendar.feed import ChangeFeed
from intentive.calendar.proxy import SyncProxyClient
from intentive.calendar.store import EventStore
from intentive.calendar.sync import ChangeSubscription, EventSyncReconciler
from intentive.core.database import get_session_factory
from intentive.core.errors import FetchError, NotFoundOrForbidden, PersistError
from intentive.core.services import (
    get_auth_manager,
    get_change_feed,
    get_current_session,
    get_reconciler,
    get_sync_proxy,
)
from intentive.models import AuthSession, EventCreate, EventRead, EventUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=list[EventRead])
async def list_events(
    day: date | None = None,
    session: AuthSession = Depends(get_current_session),
    reconciler: EventSyncReconciler = Depends(get_reconciler),
):
    """
    List the signed-in user's events active during a UTC calendar day.

    An event is included when any part of it falls inside the day, so
    events that started the day before or run past midnight show up.
    ``day`` defaults to today (UTC).
    """
    day = day or datetime.now(UTC).date()
    try:
        events = await reconciler.list_active(session.user_id, day)
    except FetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [EventRead.model_validate(e) for e in events]


@router.post("", response_model=EventRead, status_code=201)
async def create_event(
    draft: EventCreate,
    session: AuthSession = Depends(get_current_session),
    reconciler: EventSyncReconciler = Depends(get_reconciler),
):
    """Create an event. It is saved even if the calendar push fails."""
    try:
        event = await reconciler.create(session.user_id, draft)
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return EventRead.model_validate(event)


@router.patch("/{event_id}", status_code=204)
async def update_event(
    event_id: UUID,
    patch: EventUpdate,
    session: AuthSession = Depends(get_current_session),
    reconciler: EventSyncReconciler = Depends(get_reconciler),
):
    """Update an event the signed-in user owns."""
    try:
        await reconciler.update(session.user_id, event_id, patch)
    except NotFoundOrForbidden:
        raise HTTPException(status_code=404, detail="Event not found")
    except FetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(status_code=204)


@router.delete("/{event_id}", status_code=204)
async def delete_event(
    event_id: UUID,
    session: AuthSession = Depends(get_current_session),
    reconciler: EventSyncReconciler = Depends(get_reconciler),
):
    """Delete an event, removing its calendar copy first when linked."""
    try:
        await reconciler.delete(session.user_id, event_id)
    except NotFoundOrForbidden:
        raise HTTPException(status_code=404, detail="Event not found")
    except FetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(status_code=204)


@router.websocket("/stream")
async def event_stream(
    websocket: WebSocket,
    day: date | None = None,
    auth: AuthSessionManager = Depends(get_auth_manager),
    proxy: SyncProxyClient = Depends(get_sync_proxy),
    feed: ChangeFeed = Depends(get_change_feed),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Live view of one day.

    Sends the day's event list as JSON on connect and again after every
    change to the user's events. The stream is closed by the server when
    the user signs out or another user signs in.
    """
    current = auth.session
    if current is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    user_id = current.user_id
    day = day or datetime.now(UTC).date()

    async def send_active():
        # Fresh session per refresh so each list sees committed writes
        with session_factory() as db:
            reconciler = EventSyncReconciler(EventStore(db, feed), proxy, auth)
            events = await reconciler.list_active(user_id, day)
            payload = [EventRead.model_validate(e).model_dump(mode="json") for e in events]
        await websocket.send_json(payload)

    # Subscribe before the first list so no change falls between the two
    with session_factory() as db:
        reconciler = EventSyncReconciler(EventStore(db, feed), proxy, auth)
        subscription = reconciler.subscribe_to_changes(user_id, send_active)
    logger.info(f"Event stream opened for user {user_id} on {day}")
    try:
        try:
            await send_active()
        except FetchError as e:
            logger.error(f"Event stream for user {user_id} could not load events: {e}")
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return
        await _serve_until_closed(websocket, subscription)
    finally:
        subscription.close()
        logger.info(f"Event stream closed for user {user_id}")


async def _serve_until_closed(websocket: WebSocket, subscription: ChangeSubscription):
    """Run until the client disconnects or the subscription is torn down."""
    receiver = asyncio.create_task(_until_disconnect(websocket))
    closer = asyncio.create_task(subscription.wait_closed())
    done, pending = await asyncio.wait({receiver, closer}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    if receiver not in done:
        await websocket.close()


async def _until_disconnect(websocket: WebSocket):
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
