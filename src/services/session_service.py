"""Service layer for signed-in sessions."""
import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.auth_session import AuthSession
from models.user import User
from schemas.events import AuthChangeKind
from schemas.session import Session, SessionUser
from services import change_feed

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "bs_"


def generate_token() -> tuple[str, str, str]:
    """
    Generate a secure session token.

    Returns:
        Tuple of (plaintext_token, token_hash, token_prefix).
        The plaintext is only handed to the client (cookie), never stored.
    """
    raw = secrets.token_urlsafe(32)
    plaintext = f"{TOKEN_PREFIX}{raw}"
    token_hash = hash_token(plaintext)
    token_prefix = plaintext[:12]  # "bs_" + first 9 chars of raw
    return plaintext, token_hash, token_prefix


def hash_token(token: str) -> str:
    """Hash a token for comparison against stored hashes."""
    return hashlib.sha256(token.encode()).hexdigest()


def _as_aware(value: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


async def create_session(
    db: AsyncSession,
    user: User,
    provider: str,
    ttl_hours: int,
) -> tuple[AuthSession, str]:
    """
    Sign a user in by creating a new session.

    Returns:
        Tuple of (AuthSession model, plaintext_token).
        The plaintext token is only available at creation time.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    plaintext, token_hash, token_prefix = generate_token()
    auth_session = AuthSession(
        user_id=user.id,
        token_hash=token_hash,
        token_prefix=token_prefix,
        provider=provider,
        expires_at=datetime.now(UTC) + timedelta(hours=ttl_hours),
    )
    db.add(auth_session)
    await db.flush()
    await db.refresh(auth_session)
    change_feed.queue_auth_change(db, AuthChangeKind.SIGNED_IN, user.id, auth_session.id)
    logger.info("Session %s created for user %s via %s", token_prefix, user.id, provider)
    return auth_session, plaintext


async def get_session(db: AsyncSession, plaintext_token: str | None) -> Session | None:
    """
    Resolve a plaintext token to the current session.

    Returns None when no token is given, or the token is unknown or expired.
    Updates last_used_at on success (uses flush, not commit).
    """
    if not plaintext_token:
        return None

    # SECURITY: Hash before lookup so the query never compares plaintext tokens.
    result = await db.execute(
        select(AuthSession, User)
        .join(User, User.id == AuthSession.user_id)
        .where(AuthSession.token_hash == hash_token(plaintext_token)),
    )
    row = result.one_or_none()
    if row is None:
        return None
    auth_session, user = row

    expires_at = _as_aware(auth_session.expires_at)
    if datetime.now(UTC) >= expires_at:
        return None

    auth_session.last_used_at = datetime.now(UTC)
    await db.flush()

    return Session(
        session_id=auth_session.id,
        token=plaintext_token,
        user=SessionUser.model_validate(user),
        expires_at=expires_at,
    )


async def delete_session(db: AsyncSession, plaintext_token: str | None) -> bool:
    """
    Sign out: delete the session for a token. Returns True if a session was deleted.

    Queues a SIGNED_OUT notification so open live views of this session can react.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    if not plaintext_token:
        return False
    result = await db.execute(
        select(AuthSession).where(AuthSession.token_hash == hash_token(plaintext_token)),
    )
    auth_session = result.scalar_one_or_none()
    if auth_session is None:
        return False

    change_feed.queue_auth_change(
        db, AuthChangeKind.SIGNED_OUT, auth_session.user_id, auth_session.id,
    )
    await db.delete(auth_session)
    await db.flush()
    logger.info("Session %s signed out", auth_session.token_prefix)
    return True


async def delete_expired_sessions(db: AsyncSession, now: datetime | None = None) -> int:
    """
    Delete every session whose expiry has passed. Returns the number deleted.

    Expired sessions are already rejected by `get_session`, so no sign-out
    notification is queued for them.

    Note:
        Does not commit. Caller handles commit.
    """
    if now is None:
        now = datetime.now(UTC)
    result = await db.execute(
        delete(AuthSession)
        .where(AuthSession.expires_at <= now)
        .execution_options(synchronize_session="fetch"),
    )
    await db.flush()
    return result.rowcount or 0
