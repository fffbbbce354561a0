"""
The backend client used by live views.

Live views never reach for globals: each one gets a `LiveBackend` built with an
explicit session token, session factory and change bus. Every call runs in its
own short transaction, publishes its change notifications after commit, and
surfaces storage or bus failures as `BackendError`.
"""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol
from uuid import UUID

import asyncpg
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.change_bus import (
    ChangeBus,
    ChangeBusError,
    Subscription,
    auth_channel,
    bookmarks_channel,
)
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from schemas.session import Session
from services import bookmark_service, change_feed, session_service
from services.exceptions import BackendError

logger = logging.getLogger(__name__)

# Database failures, including driver and socket errors SQLAlchemy does not wrap
STORAGE_ERRORS = (
    SQLAlchemyError,
    OSError,
    TimeoutError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


class BookmarkBackend(Protocol):
    """Operations a live view needs from the backend."""

    async def get_session(self) -> Session | None: ...

    async def sign_out(self) -> bool: ...

    async def list_bookmarks(self, user_id: UUID) -> list[BookmarkResponse]: ...

    async def insert_bookmark(self, user_id: UUID, data: BookmarkCreate) -> BookmarkResponse: ...

    async def update_bookmark(
        self, user_id: UUID, bookmark_id: UUID, data: BookmarkUpdate,
    ) -> BookmarkResponse | None: ...

    async def delete_bookmark(self, user_id: UUID, bookmark_id: UUID) -> bool: ...

    async def subscribe_bookmarks(self, user_id: UUID) -> Subscription: ...

    async def subscribe_auth(self, user_id: UUID) -> Subscription: ...


class LiveBackend:
    """
    Database- and bus-backed implementation of BookmarkBackend.

    Normally each call opens its own transaction from `session_factory`. When
    built with `db` (a request-scoped session, see `for_request`), calls run on
    that session instead and leave commit and publishing to the request's unit
    of work.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        change_bus: ChangeBus | None,
        session_token: str | None,
        db: AsyncSession | None = None,
    ) -> None:
        if session_factory is None and db is None:
            raise ValueError("LiveBackend needs a session factory or a database session")
        self._session_factory = session_factory
        self._change_bus = change_bus
        self._session_token = session_token
        self._db = db

    @classmethod
    def for_request(
        cls,
        db: AsyncSession,
        change_bus: ChangeBus | None,
        session_token: str | None,
    ) -> "LiveBackend":
        """Backend bound to a request's database session."""
        return cls(None, change_bus, session_token, db=db)

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run one unit of work; publish its notifications only after commit."""
        if self._db is not None:
            try:
                yield self._db
            except STORAGE_ERRORS as e:
                change_feed.discard_pending(self._db)
                try:
                    await self._db.rollback()
                except STORAGE_ERRORS as rollback_error:
                    logger.warning("Rollback after %s failed: %s", operation, rollback_error)
                raise BackendError(operation, str(e)) from e
            return

        try:
            async with self._session_factory() as db:
                try:
                    yield db
                    await db.commit()
                except Exception:
                    change_feed.discard_pending(db)
                    await db.rollback()
                    raise
                await change_feed.publish_pending(db, self._change_bus)
        except STORAGE_ERRORS as e:
            raise BackendError(operation, str(e)) from e

    async def get_session(self) -> Session | None:
        """Resolve this backend's token to the current session."""
        async with self._transaction("get_session") as db:
            return await session_service.get_session(db, self._session_token)

    async def sign_out(self) -> bool:
        """Delete the current session; other live views of it are notified."""
        async with self._transaction("sign_out") as db:
            return await session_service.delete_session(db, self._session_token)

    async def list_bookmarks(self, user_id: UUID) -> list[BookmarkResponse]:
        """All bookmarks owned by user_id, newest first."""
        async with self._transaction("list_bookmarks") as db:
            rows = await bookmark_service.get_bookmarks(db, user_id)
            return [BookmarkResponse.model_validate(row) for row in rows]

    async def insert_bookmark(self, user_id: UUID, data: BookmarkCreate) -> BookmarkResponse:
        """Insert a bookmark owned by user_id."""
        async with self._transaction("insert_bookmark") as db:
            bookmark = await bookmark_service.create_bookmark(db, user_id, data)
            return BookmarkResponse.model_validate(bookmark)

    async def update_bookmark(
        self,
        user_id: UUID,
        bookmark_id: UUID,
        data: BookmarkUpdate,
    ) -> BookmarkResponse | None:
        """Update a bookmark owned by user_id; None if it does not exist."""
        async with self._transaction("update_bookmark") as db:
            bookmark = await bookmark_service.update_bookmark(db, user_id, bookmark_id, data)
            if bookmark is None:
                return None
            return BookmarkResponse.model_validate(bookmark)

    async def delete_bookmark(self, user_id: UUID, bookmark_id: UUID) -> bool:
        """Delete a bookmark owned by user_id."""
        async with self._transaction("delete_bookmark") as db:
            return await bookmark_service.delete_bookmark(db, user_id, bookmark_id)

    async def _subscribe(self, channel: str) -> Subscription:
        if self._change_bus is None:
            raise BackendError("subscribe", "no change bus configured")
        try:
            return await self._change_bus.subscribe(channel)
        except ChangeBusError as e:
            raise BackendError("subscribe", str(e)) from e

    async def subscribe_bookmarks(self, user_id: UUID) -> Subscription:
        """Open the user's bookmark change channel."""
        return await self._subscribe(bookmarks_channel(user_id))

    async def subscribe_auth(self, user_id: UUID) -> Subscription:
        """Open the user's auth-state channel."""
        return await self._subscribe(auth_channel(user_id))
