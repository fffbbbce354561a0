"""
Live view socket for the bookmark page.

Each connection owns one BookmarkStore (and through it one RealtimeSubscriber)
for the connecting session. Store updates are rendered to a list fragment and
pushed to the browser; the browser sends add/delete/refetch/logout actions back.
All outgoing messages go through one sender task so sends never interleave.
"""
import asyncio
import json
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.dependencies import get_live_backend
from api.rendering import render_bookmark_list
from live.backend import BookmarkBackend
from live.store import BookmarkStore, StoreState
from live.view import LOGIN_PATH, ActionResult, BookmarkView

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])

Message = dict[str, Any]


def bookmarks_message(store: BookmarkStore) -> Message:
    """Snapshot of the store as sent to the browser."""
    bookmarks = store.bookmarks
    return {
        "type": "bookmarks",
        "html": render_bookmark_list(bookmarks, loading=store.loading),
        "count": len(bookmarks),
        "loading": store.loading,
    }


def redirect_message(location: str = LOGIN_PATH) -> Message:
    """Tell the browser to navigate away."""
    return {"type": "redirect", "location": location}


class LiveConnection:
    """Server half of one open bookmark page."""

    def __init__(self, websocket: WebSocket, backend: BookmarkBackend) -> None:
        self.websocket = websocket
        self.store = BookmarkStore(backend)
        self.view: BookmarkView | None = None
        self._backend = backend
        self._outbox: asyncio.Queue[Message] = asyncio.Queue()
        self.store.add_listener(self._on_store_change)

    def send(self, message: Message) -> None:
        """Queue a message for the browser."""
        self._outbox.put_nowait(message)

    def _on_store_change(self, store: BookmarkStore) -> None:
        if store.state is StoreState.UNAUTHENTICATED_IDLE:
            self.send(redirect_message())
        elif store.state in (StoreState.LOADING_BOOKMARKS, StoreState.READY):
            self.send(bookmarks_message(store))

    async def _send_loop(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self.websocket.send_json(message)
            finally:
                self._outbox.task_done()

    async def run(self) -> None:
        """Start the store, then serve browser actions until the socket closes."""
        sender = asyncio.create_task(self._send_loop(), name="live-view-sender")
        try:
            await self.store.start()
            if self.store.user is None:
                # Not signed in: deliver the redirect, then hang up
                await self._outbox.join()
                await self.websocket.close()
                return
            self.view = BookmarkView(self._backend, self.store.user, self.store)
            while True:
                raw = await self.websocket.receive_text()
                await self.handle(raw)
        except WebSocketDisconnect:
            logger.debug("Live view disconnected")
        finally:
            await self.store.close()
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    async def handle(self, raw: str) -> None:
        """Dispatch one browser action."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed live view message: %.200s", raw)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring malformed live view message: %.200s", raw)
            return
        if self.view is None or self.store.state is StoreState.UNAUTHENTICATED_IDLE:
            self.send(redirect_message())
            return

        action = message.get("type")
        if action == "add":
            result = await self.view.add_bookmark(
                str(message.get("title") or ""), str(message.get("url") or ""),
            )
            if result.ok:
                self.send({"type": "form", "title": "", "url": ""})
            self._send_result(result)
        elif action == "delete":
            try:
                bookmark_id = UUID(str(message.get("id")))
            except ValueError:
                logger.warning("Ignoring delete for invalid id %r", message.get("id"))
                return
            result = await self.view.delete_bookmark(
                bookmark_id, confirmed=bool(message.get("confirmed")),
            )
            self._send_result(result)
        elif action == "refetch":
            await self.store.refetch()
        elif action == "logout":
            self._send_result(await self.view.logout())
        else:
            logger.warning("Ignoring unknown live view message type %r", action)

    def _send_result(self, result: ActionResult) -> None:
        if result.alert:
            self.send({"type": "alert", "message": result.alert})
        if result.redirect:
            self.send(redirect_message(result.redirect))


@router.websocket("/bookmarks/live")
async def bookmarks_live(
    websocket: WebSocket,
    backend: BookmarkBackend = Depends(get_live_backend),
) -> None:
    """Live view of the signed-in user's bookmarks."""
    await websocket.accept()
    await LiveConnection(websocket, backend).run()
