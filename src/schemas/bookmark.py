"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def require_text(value: str, field_name: str) -> str:
    """Strip surrounding whitespace and reject values that end up empty."""
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must not be empty")
    return stripped


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    The url is free text: it only has to be non-empty, it is not parsed as a link.
    """

    title: str = Field(max_length=500)
    url: str

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Title must contain something besides whitespace."""
        return require_text(v, "title")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Url must contain something besides whitespace."""
        return require_text(v, "url")


class BookmarkUpdate(BaseModel):
    """Schema for updating an existing bookmark. Omitted fields are left unchanged."""

    title: str | None = Field(default=None, max_length=500)
    url: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str | None) -> str | None:
        """Title, when given, must contain something besides whitespace."""
        if v is None:
            return None
        return require_text(v, "title")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Url, when given, must contain something besides whitespace."""
        if v is None:
            return None
        return require_text(v, "url")


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses and realtime row payloads."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    url: str
    user_id: UUID
    created_at: datetime
    updated_at: datetime
