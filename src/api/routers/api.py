"""JSON API: session info, bookmark CRUD, and the raw realtime feed."""
import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, WebSocket, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_session, get_live_backend
from core.change_bus import Subscription
from live.backend import BookmarkBackend
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from schemas.events import AuthChange, AuthChangeKind
from schemas.session import Session, SessionResponse
from services import bookmark_service
from services.exceptions import BackendError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])

# Private-use close code: no valid session on the socket
WS_UNAUTHORIZED = 4401


@router.get("/session", response_model=SessionResponse)
async def get_session_info(
    session: Session = Depends(get_current_session),
) -> SessionResponse:
    """Get the current session's user."""
    return SessionResponse(user=session.user, expires_at=session.expires_at)


@router.get("/bookmarks", response_model=list[BookmarkResponse])
async def list_bookmarks(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_async_session),
) -> list[BookmarkResponse]:
    """List the current user's bookmarks, newest first."""
    rows = await bookmark_service.get_bookmarks(db, session.user.id)
    return [BookmarkResponse.model_validate(row) for row in rows]


@router.post("/bookmarks", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Create a new bookmark."""
    bookmark = await bookmark_service.create_bookmark(db, session.user.id, data)
    return BookmarkResponse.model_validate(bookmark)


@router.get("/bookmarks/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: UUID,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Get a single bookmark by ID."""
    bookmark = await bookmark_service.get_bookmark(db, session.user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.patch("/bookmarks/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: UUID,
    data: BookmarkUpdate,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Update a bookmark's title and/or url."""
    bookmark = await bookmark_service.update_bookmark(
        db, session.user.id, bookmark_id, data,
    )
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/bookmarks/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: UUID,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Delete a bookmark."""
    deleted = await bookmark_service.delete_bookmark(db, session.user.id, bookmark_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bookmark not found")


@router.websocket("/realtime")
async def realtime_feed(
    websocket: WebSocket,
    backend: BookmarkBackend = Depends(get_live_backend),
) -> None:
    """
    Stream raw change events for the caller's bookmarks.

    Each message is a JSON change event: kind, table, new, old, commit_timestamp.
    Closes with code 4401 when the connection carries no valid session, or when
    that session signs out while the feed is open.
    """
    async def reject(code: int) -> None:
        # Close codes only reach the client after the handshake completes
        await websocket.accept()
        await websocket.close(code=code)

    try:
        session = await backend.get_session()
    except BackendError:
        logger.exception("Error resolving session for realtime feed")
        session = None
    if session is None:
        await reject(WS_UNAUTHORIZED)
        return

    user_id = session.user.id
    subscriptions: list[Subscription] = []
    try:
        subscriptions.append(await backend.subscribe_bookmarks(user_id))
        subscriptions.append(await backend.subscribe_auth(user_id))
    except BackendError:
        logger.exception("Could not open realtime feed for user %s", user_id)
        for subscription in subscriptions:
            await subscription.close()
        await reject(status.WS_1011_INTERNAL_ERROR)
        return
    changes, auth_changes = subscriptions
    await websocket.accept()

    async def forward() -> None:
        async for message in changes:
            await websocket.send_text(message)

    async def signed_out() -> bool:
        async for message in auth_changes:
            try:
                change = AuthChange.model_validate_json(message)
            except ValidationError:
                logger.warning("Skipping undecodable auth message: %.200s", message)
                continue
            if (
                change.kind is AuthChangeKind.SIGNED_OUT
                and change.session_id == session.session_id
            ):
                return True
        return False

    async def drain() -> None:
        # Incoming messages are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()

    forwarder = asyncio.create_task(forward(), name=f"realtime-feed:{changes.channel}")
    watcher = asyncio.create_task(signed_out(), name=f"realtime-feed:{auth_changes.channel}")
    receiver = asyncio.create_task(drain(), name=f"realtime-feed:{user_id}:receive")
    tasks = (forwarder, watcher, receiver)
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if receiver in done:
            logger.debug("Realtime feed for user %s disconnected", user_id)
        elif watcher in done and watcher.exception() is None and watcher.result():
            logger.info("Session for user %s signed out; closing realtime feed", user_id)
            await websocket.close(code=WS_UNAUTHORIZED)
        elif forwarder in done and forwarder.exception() is not None:
            logger.warning("Realtime feed for user %s failed: %s", user_id, forwarder.exception())
        else:
            logger.warning("Realtime feed for user %s lost its channel", user_id)
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for subscription in subscriptions:
            await subscription.close()
