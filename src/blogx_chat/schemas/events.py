"""Realtime relay event models.

Every frame on the live channel is a JSON object tagged by ``type``. Inbound
frames (client to server) and outbound frames (server to client) are two
separate discriminated unions so that each side can match exhaustively.
Field names, including those of the nested message, are camelCase on the
wire and snake_case in Python. REST responses stay snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from blogx_chat.db.time import utcnow
from blogx_chat.schemas.direct_message import MessageResponse, SharedPostPreview


class RelayEvent(BaseModel):
    """Common configuration for every relay frame."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> str:
        """Serialize the event as it travels on the socket."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# Inbound (client -> server)


class IdentityEvent(RelayEvent):
    """Handshake binding the channel to a user."""

    type: Literal["identity"] = "identity"
    user_id: int
    token: str | None = None


class DirectMessageEvent(RelayEvent):
    """A message the client wants persisted and relayed."""

    type: Literal["direct_message"] = "direct_message"
    sender: int = Field(alias="from")
    receiver: int = Field(alias="to")
    content: str
    message_type: Literal["text", "shared_post"] = "text"
    shared_blog_id: int | None = None
    shared_blog_preview: SharedPostPreview | None = None
    client_id: str | None = Field(None, max_length=64)

    @field_validator("message_type", mode="before")
    @classmethod
    def normalize_message_type(cls, value: object) -> object:
        """Accept the legacy ``blog_share`` tag for shared posts."""
        if value == "blog_share":
            return "shared_post"
        if value is None:
            return "text"
        return value


class TypingEvent(RelayEvent):
    """Ephemeral typing state; never persisted."""

    type: Literal["typing", "typing_indicator"] = "typing"
    sender: int = Field(alias="from")
    receiver: int = Field(alias="to")
    is_typing: bool


InboundEvent = Annotated[
    Union[IdentityEvent, DirectMessageEvent, TypingEvent],
    Field(discriminator="type"),
]

inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(raw: str | bytes) -> InboundEvent:
    """Parse a raw client frame.

    Raises:
        pydantic.ValidationError: If the frame is not JSON or matches no event.
    """
    return inbound_adapter.validate_json(raw)


# Outbound (server -> client)


class WelcomeEvent(RelayEvent):
    """Sent once when a channel is accepted."""

    type: Literal["welcome"] = "welcome"
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class IdentifiedEvent(RelayEvent):
    """Acknowledges a successful identity handshake."""

    type: Literal["identified"] = "identified"
    user_id: int


class RelayMessage(MessageResponse):
    """A message as nested inside relay frames, camelCase like its envelope."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class NewMessageEvent(RelayEvent):
    """A persisted message, delivered to the receiver or echoed to the sender."""

    type: Literal["new_message"] = "new_message"
    message: RelayMessage
    is_sender: bool = False

    @field_validator("message", mode="before")
    @classmethod
    def from_response(cls, value: object) -> object:
        if isinstance(value, MessageResponse) and not isinstance(value, RelayMessage):
            return value.model_dump()
        return value


class MessageSentEvent(RelayEvent):
    """Acknowledgement on the channel that originated a direct message."""

    type: Literal["message_sent"] = "message_sent"
    message_id: int
    client_id: str | None = None
    delivered: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


class TypingIndicatorEvent(RelayEvent):
    """Typing state forwarded to the receiver."""

    type: Literal["typing_indicator"] = "typing_indicator"
    sender: int = Field(alias="from")
    is_typing: bool


class MessageDeletedEvent(RelayEvent):
    """A single message was hard-deleted by its sender."""

    type: Literal["message_deleted"] = "message_deleted"
    message_id: int
    recipient_id: int


class ConversationDeletedEvent(RelayEvent):
    """Every message between the recipient and ``with_user`` was removed."""

    type: Literal["conversation_deleted"] = "conversation_deleted"
    with_user: int
    deleted_count: int


class NotificationEvent(RelayEvent):
    """Feed/notification invalidation hint for the receiving user."""

    type: Literal["notification"] = "notification"
    kind: str = "message"
    from_user: int
    message_id: int | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorEvent(RelayEvent):
    """Failure notice sent only to the channel whose request failed."""

    type: Literal["error"] = "error"
    message: str
    code: str = "error"
    client_id: str | None = None


OutboundEvent = Annotated[
    Union[
        WelcomeEvent,
        IdentifiedEvent,
        NewMessageEvent,
        MessageSentEvent,
        TypingIndicatorEvent,
        MessageDeletedEvent,
        ConversationDeletedEvent,
        NotificationEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

outbound_adapter: TypeAdapter[OutboundEvent] = TypeAdapter(OutboundEvent)


def parse_outbound(raw: str | bytes) -> OutboundEvent:
    """Parse a raw server frame on the client side."""
    return outbound_adapter.validate_json(raw)
