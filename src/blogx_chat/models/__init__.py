"""SQLAlchemy models for the BlogX Chat application."""

from .direct_message import DirectMessage, MessageKind
from .post import Post
from .user import User

__all__ = [
    "DirectMessage", "MessageKind",
    "Post",
    "User",
]
