"""Tests for session service layer functionality."""
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.auth_session import AuthSession
from models.user import User
from schemas.events import AuthChange, AuthChangeKind
from services.change_feed import PENDING_KEY
from services.session_service import (
    create_session,
    delete_expired_sessions,
    delete_session,
    generate_token,
    get_session,
    hash_token,
)


def pending_auth_changes(db_session: AsyncSession) -> list[AuthChange]:
    """Decode the auth notifications queued on a session."""
    return [
        AuthChange.model_validate_json(message)
        for channel, message in db_session.info.get(PENDING_KEY, [])
        if channel.startswith("auth:")
    ]


# =============================================================================
# generate_token / hash_token
# =============================================================================


def test__generate_token__returns_tuple_with_prefix() -> None:
    """Test that generate_token returns a valid tuple."""
    plaintext, token_hash, prefix = generate_token()

    assert plaintext.startswith("bs_")
    assert len(plaintext) > 20
    assert prefix == plaintext[:12]
    assert token_hash == hash_token(plaintext)
    assert len(token_hash) == 64  # SHA256 hex digest


def test__generate_token__produces_unique_tokens() -> None:
    """Test that generate_token produces unique tokens."""
    tokens = [generate_token()[0] for _ in range(10)]
    assert len(set(tokens)) == 10


# =============================================================================
# create_session
# =============================================================================


async def test__create_session__stores_only_hash(
    db_session: AsyncSession, test_user: User,
) -> None:
    """The plaintext token is returned once and never stored."""
    auth_session, plaintext = await create_session(
        db_session, test_user, provider="google", ttl_hours=1,
    )

    assert auth_session.token_hash == hash_token(plaintext)
    assert auth_session.token_prefix == plaintext[:12]
    assert auth_session.provider == "google"
    stored = (await db_session.execute(select(AuthSession))).scalars().all()
    assert all(plaintext not in (s.token_hash, s.token_prefix) for s in stored)


async def test__create_session__queues_signed_in(
    db_session: AsyncSession, test_user: User,
) -> None:
    """Signing in queues a SIGNED_IN notification on the user's auth channel."""
    auth_session, _ = await create_session(db_session, test_user, provider="google", ttl_hours=1)

    [change] = pending_auth_changes(db_session)
    assert change.kind is AuthChangeKind.SIGNED_IN
    assert change.session_id == auth_session.id
    assert change.user_id == test_user.id


# =============================================================================
# get_session
# =============================================================================


async def test__get_session__resolves_user(db_session: AsyncSession, test_user: User) -> None:
    """A valid token resolves to the session with the embedded user."""
    auth_session, plaintext = await create_session(
        db_session, test_user, provider="google", ttl_hours=1,
    )

    session = await get_session(db_session, plaintext)

    assert session is not None
    assert session.session_id == auth_session.id
    assert session.token == plaintext
    assert session.user.id == test_user.id
    assert session.user.email == "test@example.com"


async def test__get_session__updates_last_used_at(
    db_session: AsyncSession, test_user: User,
) -> None:
    """Resolving a session records when it was last used."""
    auth_session, plaintext = await create_session(
        db_session, test_user, provider="google", ttl_hours=1,
    )
    assert auth_session.last_used_at is None

    await get_session(db_session, plaintext)

    assert auth_session.last_used_at is not None


async def test__get_session__none_or_unknown_token(db_session: AsyncSession) -> None:
    """No token, an empty token and an unknown token all mean signed out."""
    assert await get_session(db_session, None) is None
    assert await get_session(db_session, "") is None
    assert await get_session(db_session, "bs_unknown") is None


async def test__get_session__expired_is_none(db_session: AsyncSession, test_user: User) -> None:
    """Expired sessions are treated as absent."""
    auth_session, plaintext = await create_session(
        db_session, test_user, provider="google", ttl_hours=1,
    )
    auth_session.expires_at = datetime.now(UTC) - timedelta(minutes=1)
    await db_session.flush()

    assert await get_session(db_session, plaintext) is None


# =============================================================================
# delete_session
# =============================================================================


async def test__delete_session__removes_row_and_queues_signed_out(
    db_session: AsyncSession, test_user: User,
) -> None:
    """Signing out deletes the session and queues SIGNED_OUT for open views."""
    auth_session, plaintext = await create_session(
        db_session, test_user, provider="google", ttl_hours=1,
    )
    session_id = auth_session.id
    db_session.info.clear()

    assert await delete_session(db_session, plaintext) is True

    assert await get_session(db_session, plaintext) is None
    [change] = pending_auth_changes(db_session)
    assert change.kind is AuthChangeKind.SIGNED_OUT
    assert change.session_id == session_id


async def test__delete_session__only_that_session(
    db_session: AsyncSession, test_user: User,
) -> None:
    """Other sessions of the same user stay signed in."""
    _, first = await create_session(db_session, test_user, provider="google", ttl_hours=1)
    _, second = await create_session(db_session, test_user, provider="google", ttl_hours=1)

    await delete_session(db_session, first)

    assert await get_session(db_session, first) is None
    assert await get_session(db_session, second) is not None


async def test__delete_session__unknown_token_is_false(db_session: AsyncSession) -> None:
    """Signing out without a valid session is a no-op."""
    assert await delete_session(db_session, None) is False
    assert await delete_session(db_session, "bs_unknown") is False
    assert pending_auth_changes(db_session) == []


# =============================================================================
# delete_expired_sessions
# =============================================================================


async def test__delete_expired_sessions__removes_only_expired(
    db_session: AsyncSession, test_user: User,
) -> None:
    """Sessions past their expiry are deleted; live ones stay usable."""
    expired, _ = await create_session(db_session, test_user, provider="google", ttl_hours=1)
    _, live_token = await create_session(db_session, test_user, provider="google", ttl_hours=48)
    expired_id = expired.id

    deleted = await delete_expired_sessions(
        db_session, now=datetime.now(UTC) + timedelta(hours=2),
    )

    assert deleted == 1
    remaining = (await db_session.execute(select(AuthSession.id))).scalars().all()
    assert expired_id not in remaining
    assert len(remaining) == 1
    assert await get_session(db_session, live_token) is not None


async def test__delete_expired_sessions__nothing_expired(
    db_session: AsyncSession, test_user: User,
) -> None:
    """With every session still valid nothing is deleted."""
    await create_session(db_session, test_user, provider="google", ttl_hours=1)

    assert await delete_expired_sessions(db_session) == 0
