"""Service layer for user lookup and creation."""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User

DEV_USER_SUBJECT = "dev|local-development-user"
DEV_USER_EMAIL = "dev@localhost"


async def get_user(db: AsyncSession, provider_subject: str) -> User | None:
    """Get a user by identity provider subject."""
    result = await db.execute(select(User).where(User.provider_subject == provider_subject))
    return result.scalar_one_or_none()


async def get_or_create_user(
    db: AsyncSession,
    provider_subject: str,
    email: str | None = None,
) -> User:
    """
    Get existing user or create new one from identity provider claims.

    Handles race conditions where two logins for the same new user run
    concurrently. If an IntegrityError occurs (due to unique constraint on
    provider_subject), the function rolls back and fetches the existing user.

    Note: Uses flush(), not commit. Session generator handles commit at request end.

    Important: This is called first in the login callback, before any other
    database work in the request, so the rollback has nothing else to undo.
    """
    user = await get_user(db, provider_subject)

    if user is None:
        user = User(provider_subject=provider_subject, email=email)
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            # Race condition: another request created the user between our SELECT
            # and INSERT. Rollback and fetch the existing user.
            await db.rollback()
            result = await db.execute(
                select(User).where(User.provider_subject == provider_subject),
            )
            user = result.scalar_one()

    # Update email if the provider reports a new one; a missing email never
    # overwrites a known one
    if email and user.email != email:
        user.email = email
        await db.flush()

    return user


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create the local development user for DEV_MODE."""
    return await get_or_create_user(db, provider_subject=DEV_USER_SUBJECT, email=DEV_USER_EMAIL)
