# src/blogx_chat/models/direct_message.py
"""Models describing direct messages between users."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from blogx_chat.db.session import Base
from blogx_chat.db.time import as_utc, utcnow


class MessageKind(str, enum.Enum):
    """Discriminates plain text from shared-post messages."""

    TEXT = "text"
    SHARED_POST = "shared_post"


class DirectMessage(Base):
    """One message from a sender to a receiver.

    Conversations are not stored: the unordered pair of participants is the
    conversation key. Sender, receiver and content never change after insert;
    only ``read`` is flipped.
    """

    __tablename__ = "direct_message"
    __table_args__ = (
        Index("ix_direct_message_pair", "sender_id", "receiver_id", "created_at"),
        Index("ix_direct_message_unread", "receiver_id", "read"),
        UniqueConstraint("sender_id", "client_id", name="uq_direct_message_client_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    kind: Mapped[str] = mapped_column(
        String(16), default=MessageKind.TEXT.value, nullable=False
    )
    shared_post_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("post.id", ondelete="SET NULL"), nullable=True
    )
    # Snapshot taken when the post was shared; never refreshed afterwards.
    shared_preview_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    shared_preview_excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    shared_preview_image: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optional idempotency key chosen by the sending client.
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    @property
    def created_at_utc(self) -> datetime:
        """Return ``created_at`` as an aware UTC datetime."""
        value = as_utc(self.created_at)
        assert value is not None
        return value

    @property
    def has_preview(self) -> bool:
        """Return True when a shared-post snapshot is attached."""
        return self.shared_preview_title is not None

    def __repr__(self) -> str:
        return (
            f"<DirectMessage(id={self.id}, from={self.sender_id}, "
            f"to={self.receiver_id}, kind={self.kind})>"
        )
