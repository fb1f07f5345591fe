"""Direct message-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blogx_chat.core.settings import settings
from blogx_chat.db.time import as_utc
from blogx_chat.models import DirectMessage, MessageKind


class SharedPostPreview(BaseModel):
    """Snapshot of a blog post captured when it was shared."""

    title: str = Field(..., min_length=1, max_length=300)
    excerpt: str = Field("", max_length=2000)
    image: str | None = Field(None, description="Optional cover image URL")


class MessageCreate(BaseModel):
    """Schema for sending a direct message over REST."""

    content: str = Field(..., description="Message body; must not be blank")
    message_type: Literal["text", "shared_post"] = Field("text")
    shared_post_id: int | None = Field(None, gt=0)
    shared_post_preview: SharedPostPreview | None = None
    client_id: str | None = Field(
        None,
        max_length=64,
        description="Client-generated token echoed back for placeholder reconciliation",
    )

    @field_validator("content")
    @classmethod
    def validate_content(cls, value: str) -> str:
        """Reject blank bodies and cap the length."""
        stripped = value.strip()
        if not stripped:
            raise ValueError("Message cannot be empty")
        if len(stripped) > settings.message_max_length:
            raise ValueError(
                f"Message exceeds {settings.message_max_length} characters"
            )
        return stripped

    @model_validator(mode="after")
    def validate_shared_post(self) -> MessageCreate:
        """Shared-post messages must reference the post being shared."""
        if self.message_type == MessageKind.SHARED_POST.value and self.shared_post_id is None:
            raise ValueError("shared_post messages require shared_post_id")
        if self.message_type == MessageKind.TEXT.value:
            self.shared_post_id = None
            self.shared_post_preview = None
        return self


class MessageResponse(BaseModel):
    """Canonical message shape returned by the API and relayed on the socket.

    ``sender_id`` is always a plain integer so consumers never have to guess at
    alternative shapes.
    """

    id: int
    sender_id: int
    receiver_id: int
    content: str
    read: bool
    created_at: datetime
    message_type: str
    shared_post_id: int | None = None
    shared_post_preview: SharedPostPreview | None = None
    client_id: str | None = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_model(cls, message: DirectMessage) -> MessageResponse:
        """Build the response from an ORM row."""
        preview = None
        if message.has_preview:
            preview = SharedPostPreview(
                title=message.shared_preview_title or "",
                excerpt=message.shared_preview_excerpt or "",
                image=message.shared_preview_image,
            )
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            content=message.content,
            read=message.read,
            created_at=as_utc(message.created_at),
            message_type=message.kind,
            shared_post_id=message.shared_post_id,
            shared_post_preview=preview,
            client_id=message.client_id,
        )


class PeerProfile(BaseModel):
    """Just enough of a user to render a conversation row."""

    id: int
    username: str
    display_name: str
    profile_image: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(BaseModel):
    """Per-peer projection used by the conversation list."""

    peer_id: int
    peer: PeerProfile | None = None
    last_message: MessageResponse
    unread_count: int = 0


class DeleteResponse(BaseModel):
    """Outcome of a delete call; absent targets still succeed."""

    success: bool = True
    deleted: int = 0


class ReadResponse(BaseModel):
    """Outcome of a read-state update."""

    success: bool = True
    updated: int = 0
