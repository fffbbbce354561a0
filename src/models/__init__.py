"""SQLAlchemy models."""
from models.auth_session import AuthSession
from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.bookmark import Bookmark
from models.user import User

__all__ = [
    "AuthSession",
    "Base",
    "Bookmark",
    "TimestampMixin",
    "UUIDv7Mixin",
    "User",
]
