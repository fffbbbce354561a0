"""
Scheduled cleanup task.

Deletes sign-in sessions whose expiry has passed. Expired tokens are already
refused when resolved; this keeps the auth_sessions table from growing without
bound. Meant to run as a cron job (e.g., daily).

Usage:
    python -m tasks.cleanup
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from db.session import async_session_factory
from services import session_service

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    """Statistics from a cleanup run."""

    expired_sessions_deleted: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging/return."""
        return {"expired_sessions_deleted": self.expired_sessions_deleted}


async def cleanup_expired_sessions(
    db: AsyncSession,
    now: datetime | None = None,
) -> CleanupStats:
    """
    Delete expired sessions and commit.

    Args:
        db: Database session.
        now: Current time for the expiry cutoff. Defaults to datetime.now(UTC).
    """
    deleted = await session_service.delete_expired_sessions(db, now=now)
    if deleted > 0:
        logger.info("Deleted %d expired sessions", deleted)
    await db.commit()
    return CleanupStats(expired_sessions_deleted=deleted)


async def run_cleanup(
    db: AsyncSession | None = None,
    now: datetime | None = None,
) -> CleanupStats:
    """
    Run all cleanup tasks.

    Args:
        db: Database session. If None, creates one from async_session_factory.
        now: Current time for cutoff calculation. Defaults to datetime.now(UTC).
    """
    logger.info("Starting cleanup task")

    if db is not None:
        stats = await cleanup_expired_sessions(db, now=now)
    else:
        async with async_session_factory() as session:
            stats = await cleanup_expired_sessions(session, now=now)

    logger.info("Cleanup complete: %s", stats.to_dict())
    return stats


def main() -> None:
    """Entry point for running cleanup as a script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_cleanup())


if __name__ == "__main__":
    main()
