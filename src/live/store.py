"""
Bookmark store for one live view.

State machine::

    uninitialized -> auth-resolving -> unauthenticated-idle
                                    -> loading-bookmarks -> ready

The store resolves the session, opens the user's realtime channel, loads the
initial list, and then keeps the list current from change events. Every state
update notifies the registered listeners. After `close()` nothing mutates the
store anymore, including completions of calls that were already in flight.
"""
import logging
from collections.abc import Callable
from enum import StrEnum
from uuid import UUID

from live.backend import BookmarkBackend
from live.subscriber import RealtimeSubscriber
from schemas.bookmark import BookmarkResponse
from schemas.events import AuthChange, AuthChangeKind, BookmarkChange, ChangeKind
from schemas.session import Session, SessionUser
from services.exceptions import BackendError

logger = logging.getLogger(__name__)


class StoreState(StrEnum):
    """Lifecycle states of a BookmarkStore."""

    UNINITIALIZED = "uninitialized"
    AUTH_RESOLVING = "auth-resolving"
    UNAUTHENTICATED_IDLE = "unauthenticated-idle"
    LOADING_BOOKMARKS = "loading-bookmarks"
    READY = "ready"


Listener = Callable[["BookmarkStore"], None]


def _sort_key(bookmark: BookmarkResponse) -> tuple:
    return (bookmark.created_at, bookmark.id)


class BookmarkStore:
    """Holds the signed-in user's bookmark list and keeps it in sync."""

    def __init__(self, backend: BookmarkBackend) -> None:
        self._backend = backend
        self._state = StoreState.UNINITIALIZED
        self._session: Session | None = None
        self._bookmarks: list[BookmarkResponse] = []
        self._loading = True
        self._busy = False
        self._generation = 0
        self._buffered: list[BookmarkChange] = []
        self._closed = False
        self._listeners: list[Listener] = []
        self.subscriber = RealtimeSubscriber(
            backend,
            on_change=self.apply_change,
            on_auth_change=self._handle_auth_change,
        )

    @property
    def state(self) -> StoreState:
        """Current lifecycle state."""
        return self._state

    @property
    def bookmarks(self) -> list[BookmarkResponse]:
        """Snapshot of the list, newest first."""
        return list(self._bookmarks)

    @property
    def loading(self) -> bool:
        """True until the first load (or auth resolution) finishes."""
        return self._loading

    @property
    def session(self) -> Session | None:
        """The resolved session, if signed in."""
        return self._session

    @property
    def user(self) -> SessionUser | None:
        """The signed-in user, if any."""
        return self._session.user if self._session else None

    @property
    def user_id(self) -> UUID | None:
        """Id of the signed-in user, if any."""
        return self._session.user.id if self._session else None

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def add_listener(self, listener: Listener) -> None:
        """Call listener(store) after every state update."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Bookmark store listener failed")

    def _set_state(self, state: StoreState) -> None:
        if self._state is not state:
            logger.debug("Bookmark store %s -> %s", self._state, state)
        self._state = state

    async def start(self) -> None:
        """Resolve the session, open the realtime channel and load the list."""
        if self._closed or self._state is not StoreState.UNINITIALIZED:
            return
        self._set_state(StoreState.AUTH_RESOLVING)
        self._notify()

        try:
            session = await self._backend.get_session()
        except BackendError:
            logger.exception("Error resolving session")
            session = None

        if self._closed:
            return
        if session is None:
            self._become_idle()
            return

        self._session = session
        # Open the channel before loading so changes committed during the load
        # are buffered instead of lost
        await self.subscriber.follow(session.user.id)
        if self._closed:
            return
        await self.load(session.user.id)

    async def load(self, user_id: UUID) -> None:
        """
        Fetch all of user_id's bookmarks, newest first, and replace the list.

        A load that starts while another is in flight is a no-op. Fetch errors are
        logged and leave the list as it was; loading is cleared either way.
        """
        if self._closed or self._busy:
            return
        self._busy = True
        self._generation += 1
        generation = self._generation
        self._loading = True
        self._set_state(StoreState.LOADING_BOOKMARKS)
        self._notify()

        rows: list[BookmarkResponse] | None = None
        try:
            rows = await self._backend.list_bookmarks(user_id)
        except BackendError:
            logger.exception("Error loading bookmarks for user %s", user_id)
        finally:
            if generation == self._generation:
                self._busy = False

        if self._closed or generation != self._generation:
            # Closed, or superseded by a newer load (refetch) whose result wins
            return

        if rows is not None:
            self._bookmarks = list(rows)
        buffered, self._buffered = self._buffered, []
        for change in buffered:
            try:
                self._merge(change)
            except ValueError:
                logger.exception("Dropping malformed buffered change %s", change.kind)
        self._loading = False
        self._set_state(StoreState.READY)
        self._notify()

    async def refetch(self) -> None:
        """Reload the list for the signed-in user, even if a load is in flight."""
        if self._closed or self._session is None:
            return
        self._busy = False
        await self.load(self._session.user.id)

    def apply_change(self, change: BookmarkChange) -> None:
        """Apply one realtime change, or buffer it while a load is in flight."""
        if self._closed or self._session is None:
            return
        if self._busy:
            self._buffered.append(change)
            return
        self._merge(change)
        self._notify()

    def _merge(self, change: BookmarkChange) -> None:
        """Merge a change into the list by id."""
        if change.kind is ChangeKind.DELETE:
            row_id = change.row_id
            if row_id is None:
                raise ValueError("DELETE change without a row id")
            self._bookmarks = [b for b in self._bookmarks if b.id != row_id]
            return

        row = change.new
        if row is None:
            raise ValueError(f"{change.kind} change without a new row")
        if self._session is not None and row.user_id != self._session.user.id:
            logger.warning("Ignoring change for bookmark %s owned by another user", row.id)
            return

        for index, existing in enumerate(self._bookmarks):
            if existing.id == row.id:
                self._bookmarks[index] = row
                return

        # Not present yet: place it by creation time, so a late or out-of-order
        # insert does not end up above newer rows
        key = _sort_key(row)
        position = len(self._bookmarks)
        for index, existing in enumerate(self._bookmarks):
            if _sort_key(existing) < key:
                position = index
                break
        self._bookmarks.insert(position, row)

    async def _handle_auth_change(self, change: AuthChange) -> None:
        if self._closed or self._session is None:
            return
        if change.kind is not AuthChangeKind.SIGNED_OUT:
            return
        if change.session_id != self._session.session_id:
            return
        logger.info("Session for user %s signed out elsewhere", change.user_id)
        await self.subscriber.stop()
        if self._closed:
            return
        self._become_idle()

    def _become_idle(self) -> None:
        self._session = None
        self._bookmarks = []
        self._buffered = []
        self._busy = False
        self._loading = False
        self._set_state(StoreState.UNAUTHENTICATED_IDLE)
        self._notify()

    async def close(self) -> None:
        """Tear down: stop the realtime channel and ignore all later completions."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        await self.subscriber.stop()
