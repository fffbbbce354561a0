"""Session resolution for pages, the JSON API and live view sockets."""
import logging

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import get_async_session
from schemas.session import Session
from services import session_service

logger = logging.getLogger(__name__)


def get_session_token(
    connection: HTTPConnection,
    settings: Settings = Depends(get_settings),
) -> str | None:
    """
    Extract the session token presented by the client.

    An `Authorization: Bearer` header wins over the session cookie, so scripts
    can call the JSON API without a browser.
    """
    authorization = connection.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return connection.cookies.get(settings.session_cookie_name) or None


async def get_optional_session(
    token: str | None = Depends(get_session_token),
    db: AsyncSession = Depends(get_async_session),
) -> Session | None:
    """Dependency returning the current session, or None when signed out."""
    return await session_service.get_session(db, token)


async def get_current_session(
    session: Session | None = Depends(get_optional_session),
) -> Session:
    """
    Dependency that requires a valid session.

    Raises:
        HTTPException: 401 if no valid session was presented.
    """
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
