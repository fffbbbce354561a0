"""Pydantic schemas for resolved sessions."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SessionUser(BaseModel):
    """The user embedded in a session."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str | None


class Session(BaseModel):
    """
    A resolved, valid session.

    `token` is the plaintext presented by the client; it is never read back from
    storage. `session_id` identifies the stored row (used to match sign-out
    notifications).
    """

    session_id: UUID
    token: str
    user: SessionUser
    expires_at: datetime


class SessionResponse(BaseModel):
    """Response for GET /api/session (never includes the token)."""

    user: SessionUser
    expires_at: datetime
