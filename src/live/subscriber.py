"""Realtime subscriber: keeps one change channel open for the current user."""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError

from core.change_bus import ChangeBusError, Subscription
from live.backend import BookmarkBackend
from schemas.events import AuthChange, BookmarkChange
from services.exceptions import BackendError

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[BookmarkChange], None]
AuthChangeHandler = Callable[[AuthChange], Awaitable[None]]


class RealtimeSubscriber:
    """
    Applies bookmark change events for one user as they arrive.

    At most one bookmark channel (plus the matching auth channel, when an auth
    handler is given) is open at a time. Following a different user tears the
    previous channels down before opening the new ones. A failure while handling
    one event is logged and the channel stays open.
    """

    def __init__(
        self,
        backend: BookmarkBackend,
        on_change: ChangeHandler,
        on_auth_change: AuthChangeHandler | None = None,
    ) -> None:
        self._backend = backend
        self._on_change = on_change
        self._on_auth_change = on_auth_change
        self._user_id: UUID | None = None
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task[None]] = []
        self.events_processed = 0
        self.events_failed = 0

    @property
    def user_id(self) -> UUID | None:
        """User whose channel is open, if any."""
        return self._user_id

    @property
    def active(self) -> bool:
        """Whether a channel is open and being read."""
        return any(not task.done() for task in self._tasks)

    async def follow(self, user_id: UUID | None) -> None:
        """
        Open the channel for user_id, replacing any channel for another user.

        Following None only tears the current channel down. If the channel cannot
        be opened the error is logged and the subscriber stays inactive.
        """
        if user_id is not None and user_id == self._user_id and self.active:
            return
        await self.stop()
        if user_id is None:
            return

        auth: Subscription | None = None
        try:
            bookmarks = await self._backend.subscribe_bookmarks(user_id)
            self._subscriptions.append(bookmarks)
            if self._on_auth_change is not None:
                auth = await self._backend.subscribe_auth(user_id)
                self._subscriptions.append(auth)
        except BackendError:
            logger.exception("Could not open realtime channel for user %s", user_id)
            await self._close_subscriptions()
            return

        self._user_id = user_id
        self._tasks.append(
            asyncio.create_task(
                self._read_bookmarks(bookmarks), name=f"realtime:{bookmarks.channel}",
            ),
        )
        if auth is not None:
            self._tasks.append(
                asyncio.create_task(self._read_auth(auth), name=f"realtime:{auth.channel}"),
            )
        logger.info("Realtime channel %s opened", bookmarks.channel)

    async def stop(self) -> None:
        """
        Tear down the open channels.

        Safe to call from inside a change handler: the calling reader task is not
        cancelled, it simply finds its subscription closed and exits.
        """
        current = asyncio.current_task()
        tasks, self._tasks = self._tasks, []
        others = [task for task in tasks if task is not current]
        for task in others:
            task.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)
        await self._close_subscriptions()
        if self._user_id is not None:
            logger.info("Realtime channel for user %s closed", self._user_id)
        self._user_id = None

    async def _close_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.close()

    def handle_message(self, message: str) -> bool:
        """Decode and apply one bookmark change message. Returns True if applied."""
        try:
            change = BookmarkChange.model_validate_json(message)
        except ValidationError:
            logger.warning("Skipping undecodable realtime message: %.200s", message)
            self.events_failed += 1
            return False

        logger.debug("Realtime event %s for row %s", change.kind, change.row_id)
        try:
            self._on_change(change)
        except Exception:
            logger.exception("Error processing realtime change %s", change.kind)
            self.events_failed += 1
            return False
        self.events_processed += 1
        return True

    async def _read_bookmarks(self, subscription: Subscription) -> None:
        try:
            async for message in subscription:
                self.handle_message(message)
        except ChangeBusError:
            logger.exception("Realtime channel %s failed", subscription.channel)

    async def _read_auth(self, subscription: Subscription) -> None:
        if self._on_auth_change is None:
            return
        try:
            async for message in subscription:
                try:
                    change = AuthChange.model_validate_json(message)
                except ValidationError:
                    logger.warning("Skipping undecodable auth message: %.200s", message)
                    continue
                try:
                    await self._on_auth_change(change)
                except Exception:
                    logger.exception("Error processing auth change %s", change.kind)
        except ChangeBusError:
            logger.exception("Auth channel %s failed", subscription.channel)
