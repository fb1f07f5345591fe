"""Data access helpers for direct messages and the conversations they form."""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from blogx_chat.core.settings import settings
from blogx_chat.models import DirectMessage, MessageKind, Post, User
from blogx_chat.schemas.direct_message import SharedPostPreview
from blogx_chat.services.errors import MessagePersistenceError, MessageValidationError
from blogx_chat.utils.identity import coerce_user_id

__all__ = ["ConversationRow", "MessageRepository"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationRow:
    """Derived summary of the thread between a user and one peer."""

    peer_id: int
    peer: User | None
    last_message: DirectMessage
    unread_count: int


def _pair_clause(user_a: int, user_b: int) -> Any:
    return or_(
        and_(DirectMessage.sender_id == user_a, DirectMessage.receiver_id == user_b),
        and_(DirectMessage.sender_id == user_b, DirectMessage.receiver_id == user_a),
    )


class MessageRepository:
    """Persistence for direct messages.

    Reads never raise for malformed identities; they return empty results.
    Writes commit immediately. Any database failure, on a read or a write,
    rolls the session back and surfaces as :class:`MessagePersistenceError`.
    """

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    # Collaborator lookups

    def get_user(self, user_id: Any) -> User | None:
        """Return the user with ``user_id`` or None."""
        parsed = coerce_user_id(user_id)
        if parsed is None:
            return None
        with self._guard("load user %s", parsed):
            return self.session.get(User, parsed)

    def user_exists(self, user_id: Any) -> bool:
        """Return True if ``user_id`` names an existing account."""
        parsed = coerce_user_id(user_id)
        if parsed is None:
            return False
        stmt = select(User.id).where(User.id == parsed)
        with self._guard("look up user %s", parsed):
            return self.session.execute(stmt).first() is not None

    def get_post(self, post_id: int) -> Post | None:
        """Return the blog post with ``post_id`` or None."""
        with self._guard("load post %s", post_id):
            return self.session.get(Post, post_id)

    # Reads

    def get_message(self, message_id: int) -> DirectMessage | None:
        """Return a message by identifier."""
        with self._guard("load message %s", message_id):
            return self.session.get(DirectMessage, message_id)

    def find_by_client_id(self, sender_id: int, client_id: str) -> DirectMessage | None:
        """Return the message a sender already stored under ``client_id``."""
        stmt = select(DirectMessage).where(
            DirectMessage.sender_id == sender_id,
            DirectMessage.client_id == client_id,
        )
        with self._guard("look up client id %s", client_id):
            return self.session.scalars(stmt).first()

    def list_messages(
        self,
        user_a: Any,
        user_b: Any,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DirectMessage]:
        """Return the thread between two users, oldest first.

        Args:
            user_a: One participant; order of the pair does not matter.
            user_b: The other participant.
            limit: Page size, clamped to the configured maximum.
            offset: Number of messages to skip from the oldest.
        """
        a = coerce_user_id(user_a)
        b = coerce_user_id(user_b)
        if a is None or b is None:
            return []

        page = settings.message_page_size if limit is None else limit
        page = max(1, min(page, settings.message_page_max))
        stmt = (
            select(DirectMessage)
            .where(_pair_clause(a, b))
            .order_by(DirectMessage.created_at.asc(), DirectMessage.id.asc())
            .offset(max(0, offset))
            .limit(page)
        )
        with self._guard("list messages between %s and %s", a, b):
            return list(self.session.scalars(stmt))

    def list_conversations(self, user_id: Any) -> list[ConversationRow]:
        """Summarize every thread ``user_id`` takes part in.

        Issues a fixed number of queries regardless of how many peers or
        messages exist: one ranked query for the latest message per peer, one
        grouped count of unread messages and one batch lookup of peer
        profiles. Rows are ordered by latest message, newest first.
        """
        user = coerce_user_id(user_id)
        if user is None:
            return []
        with self._guard("list conversations for %s", user):
            rows = self._conversation_rows(user)
        rows.sort(
            key=lambda row: (row.last_message.created_at_utc, row.last_message.id),
            reverse=True,
        )
        return rows

    def _conversation_rows(self, user: int) -> list[ConversationRow]:
        peer_col = case(
            (DirectMessage.sender_id == user, DirectMessage.receiver_id),
            else_=DirectMessage.sender_id,
        ).label("peer_id")
        ranked = (
            select(
                DirectMessage.id.label("message_id"),
                peer_col,
                func.row_number()
                .over(
                    partition_by=peer_col,
                    order_by=(DirectMessage.created_at.desc(), DirectMessage.id.desc()),
                )
                .label("recency"),
            )
            .where(or_(DirectMessage.sender_id == user, DirectMessage.receiver_id == user))
            .subquery()
        )
        latest = self.session.execute(
            select(ranked.c.message_id, ranked.c.peer_id).where(ranked.c.recency == 1)
        ).all()
        if not latest:
            return []

        peer_by_message = {row.message_id: row.peer_id for row in latest}
        messages = self.session.scalars(
            select(DirectMessage).where(DirectMessage.id.in_(list(peer_by_message)))
        ).all()

        unread_rows = self.session.execute(
            select(DirectMessage.sender_id, func.count(DirectMessage.id))
            .where(DirectMessage.receiver_id == user, DirectMessage.read.is_(False))
            .group_by(DirectMessage.sender_id)
        ).all()
        unread = {sender_id: int(count) for sender_id, count in unread_rows}

        peer_ids = set(peer_by_message.values())
        peers = {
            peer.id: peer
            for peer in self.session.scalars(select(User).where(User.id.in_(list(peer_ids))))
        }

        return [
            ConversationRow(
                peer_id=peer_by_message[message.id],
                peer=peers.get(peer_by_message[message.id]),
                last_message=message,
                unread_count=unread.get(peer_by_message[message.id], 0),
            )
            for message in messages
        ]

    # Writes

    def create_message(
        self,
        sender_id: Any,
        receiver_id: Any,
        content: str,
        kind: MessageKind | str = MessageKind.TEXT,
        shared_post_id: int | None = None,
        shared_preview: SharedPostPreview | None = None,
        client_id: str | None = None,
    ) -> DirectMessage:
        """Validate and persist a message, returning the stored row.

        Raises:
            MessageValidationError: If content is blank or identities are malformed.
            MessagePersistenceError: If the database rejects the insert.
        """
        sender = coerce_user_id(sender_id)
        receiver = coerce_user_id(receiver_id)
        if sender is None or receiver is None:
            raise MessageValidationError("Sender and receiver must be valid user ids")

        body = (content or "").strip()
        if not body:
            raise MessageValidationError("Message cannot be empty")
        if len(body) > settings.message_max_length:
            raise MessageValidationError(
                f"Message exceeds {settings.message_max_length} characters"
            )

        try:
            message_kind = MessageKind(kind)
        except ValueError as exc:
            raise MessageValidationError(f"Unknown message type: {kind!r}") from exc

        message = DirectMessage(
            sender_id=sender,
            receiver_id=receiver,
            content=body,
            read=False,
            kind=message_kind.value,
            client_id=client_id,
        )
        if message_kind is MessageKind.SHARED_POST:
            if shared_post_id is None or shared_preview is None:
                raise MessageValidationError(
                    "Shared-post messages need a post id and a preview"
                )
            message.shared_post_id = shared_post_id
            message.shared_preview_title = shared_preview.title
            message.shared_preview_excerpt = shared_preview.excerpt
            message.shared_preview_image = shared_preview.image

        self.session.add(message)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if client_id is not None:
                existing = self.find_by_client_id(sender, client_id)
                if existing is not None:
                    return existing
            logger.exception("Failed to store message from %s to %s", sender, receiver)
            raise MessagePersistenceError("Failed to store message") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to store message from %s to %s", sender, receiver)
            raise MessagePersistenceError("Failed to store message") from exc

        with self._guard("reload message from %s to %s", sender, receiver):
            self.session.refresh(message)
        return message

    def mark_read(self, message_id: int) -> bool:
        """Flip one message to read.

        Returns True when the message exists, whether or not it was already
        read; False when it does not exist.
        """
        message = self.get_message(message_id)
        if message is None:
            return False
        if not message.read:
            with self._guard("mark message %s read", message_id):
                message.read = True
                self.session.commit()
        return True

    def mark_all_read(self, sender_id: Any, receiver_id: Any) -> int:
        """Mark every unread message from ``sender_id`` to ``receiver_id`` read.

        Returns the number of messages updated.
        """
        sender = coerce_user_id(sender_id)
        receiver = coerce_user_id(receiver_id)
        if sender is None or receiver is None:
            return 0
        with self._guard("mark messages from %s to %s read", sender, receiver):
            result = self.session.execute(
                update(DirectMessage)
                .where(
                    DirectMessage.sender_id == sender,
                    DirectMessage.receiver_id == receiver,
                    DirectMessage.read.is_(False),
                )
                .values(read=True)
                .execution_options(synchronize_session="fetch")
            )
            self.session.commit()
        return int(result.rowcount or 0)

    def delete_message(self, message_id: int) -> bool:
        """Hard-delete one message; a missing row is not an error."""
        with self._guard("delete message %s", message_id):
            result = self.session.execute(
                delete(DirectMessage)
                .where(DirectMessage.id == message_id)
                .execution_options(synchronize_session="fetch")
            )
            self.session.commit()
        return bool(result.rowcount)

    def delete_conversation(self, user_a: Any, user_b: Any) -> int:
        """Delete every message exchanged between two users in either direction.

        Returns the number of messages removed.
        """
        a = coerce_user_id(user_a)
        b = coerce_user_id(user_b)
        if a is None or b is None:
            return 0
        with self._guard("delete conversation between %s and %s", a, b):
            result = self.session.execute(
                delete(DirectMessage)
                .where(_pair_clause(a, b))
                .execution_options(synchronize_session="fetch")
            )
            self.session.commit()
        return int(result.rowcount or 0)

    @contextmanager
    def _guard(self, action: str, *args: Any) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to " + action, *args)
            raise MessagePersistenceError(f"Failed to {action % args}") from exc
