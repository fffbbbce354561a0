"""FastAPI dependencies for injection."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_session, get_optional_session, get_session_token
from core.change_bus import get_change_bus
from core.config import get_settings
from db.session import get_async_session, get_session_factory
from live.backend import BookmarkBackend, LiveBackend


def get_live_backend(token: str | None = Depends(get_session_token)) -> BookmarkBackend:
    """
    Backend for a long-lived live view socket.

    Each call runs in its own transaction, since the socket outlives any single
    request-scoped database session.
    """
    return LiveBackend(get_session_factory(), get_change_bus(), token)


def get_request_backend(
    token: str | None = Depends(get_session_token),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkBackend:
    """Backend for a plain form post, sharing the request's unit of work."""
    return LiveBackend.for_request(db, get_change_bus(), token)


__all__ = [
    "get_async_session",
    "get_current_session",
    "get_live_backend",
    "get_optional_session",
    "get_request_backend",
    "get_session_token",
    "get_settings",
]
