"""
Queue change notifications on a database session and publish them after commit.

Services call `queue_*` while they mutate rows. The unit-of-work boundary (the
request session generator, or the live backend's own transactions) calls
`publish_pending` once the transaction has committed, so subscribers never see
a change that was rolled back.
"""
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.change_bus import ChangeBus, auth_channel, bookmarks_channel, get_change_bus
from models.bookmark import Bookmark
from schemas.bookmark import BookmarkResponse
from schemas.events import AuthChange, AuthChangeKind, BookmarkChange, ChangeKind, RowKey

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_change_events"


def _pending(db: AsyncSession) -> list[tuple[str, str]]:
    return db.info.setdefault(PENDING_KEY, [])


def queue_bookmark_change(
    db: AsyncSession,
    kind: ChangeKind,
    bookmark: Bookmark,
) -> BookmarkChange:
    """Queue a bookmark row change on the owner's channel."""
    if kind is ChangeKind.DELETE:
        change = BookmarkChange(kind=kind, old=RowKey(id=bookmark.id))
    elif kind is ChangeKind.UPDATE:
        change = BookmarkChange(
            kind=kind,
            new=BookmarkResponse.model_validate(bookmark),
            old=RowKey(id=bookmark.id),
        )
    else:
        change = BookmarkChange(kind=kind, new=BookmarkResponse.model_validate(bookmark))
    _pending(db).append((bookmarks_channel(bookmark.user_id), change.model_dump_json()))
    return change


def queue_auth_change(
    db: AsyncSession,
    kind: AuthChangeKind,
    user_id: UUID,
    session_id: UUID,
) -> AuthChange:
    """Queue a sign-in/sign-out notification on the user's auth channel."""
    change = AuthChange(kind=kind, user_id=user_id, session_id=session_id)
    _pending(db).append((auth_channel(user_id), change.model_dump_json()))
    return change


def discard_pending(db: AsyncSession) -> None:
    """Drop queued notifications (the transaction was rolled back)."""
    dropped = db.info.pop(PENDING_KEY, [])
    if dropped:
        logger.debug("Discarded %d change notifications after rollback", len(dropped))


async def publish_pending(db: AsyncSession, bus: ChangeBus | None = None) -> int:
    """
    Publish and clear queued notifications. Returns the number delivered to the bus.

    Uses the global change bus unless one is passed in. Publishing is best-effort:
    a missing or failing bus is logged, never raised, because the data change
    itself has already been committed.
    """
    pending = db.info.pop(PENDING_KEY, [])
    if not pending:
        return 0
    if bus is None:
        bus = get_change_bus()
    if bus is None:
        logger.debug("No change bus configured; dropping %d notifications", len(pending))
        return 0
    delivered = 0
    for channel, message in pending:
        if await bus.publish(channel, message):
            delivered += 1
        else:
            logger.warning("Failed to publish change notification on %s", channel)
    return delivered
