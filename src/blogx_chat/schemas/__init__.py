"""
Pydantic schemas for API request/response models and relay events.

These schemas define the structure of API data for serialization and validation.
"""

from .direct_message import (
    ConversationSummary,
    DeleteResponse,
    MessageCreate,
    MessageResponse,
    PeerProfile,
    ReadResponse,
    SharedPostPreview,
)
from .user import PresenceResponse

__all__ = [
    "ConversationSummary",
    "DeleteResponse",
    "MessageCreate",
    "MessageResponse",
    "PeerProfile",
    "PresenceResponse",
    "ReadResponse",
    "SharedPostPreview",
]
