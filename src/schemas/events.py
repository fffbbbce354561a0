"""Pydantic schemas for change notifications carried on the change bus."""
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from schemas.bookmark import BookmarkResponse


class ChangeKind(StrEnum):
    """Kind of row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RowKey(BaseModel):
    """Identity of a changed row (the `old` side of an update or delete)."""

    id: UUID


class BookmarkChange(BaseModel):
    """
    A change to one bookmark row.

    INSERT and UPDATE carry `new`; UPDATE and DELETE carry `old`.
    """

    kind: ChangeKind
    table: str = "bookmarks"
    new: BookmarkResponse | None = None
    old: RowKey | None = None
    commit_timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def row_id(self) -> UUID | None:
        """Id of the affected row, whichever side carries it."""
        if self.new is not None:
            return self.new.id
        if self.old is not None:
            return self.old.id
        return None


class AuthChangeKind(StrEnum):
    """Kind of auth-state change."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class AuthChange(BaseModel):
    """Sign-in or sign-out of one session of a user."""

    kind: AuthChangeKind
    session_id: UUID
    user_id: UUID
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
