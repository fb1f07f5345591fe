"""Client-side state of one open thread.

A message can reach the client three ways: as the optimistic placeholder
the user just typed, as the server's ``new_message`` echo, and in a REST
refresh. :class:`ConversationView` folds all three into a single ordered
list keyed by server id, using the client id carried by every copy to
replace placeholders instead of appending duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from blogx_chat.db.time import utcnow
from blogx_chat.schemas.direct_message import MessageResponse
from blogx_chat.schemas.events import (
    ConversationDeletedEvent,
    ErrorEvent,
    MessageDeletedEvent,
    NewMessageEvent,
    OutboundEvent,
)

if TYPE_CHECKING:
    from blogx_chat.client.realtime import RealtimeClient

logger = logging.getLogger(__name__)


@dataclass
class ThreadEntry:
    """One row of the thread; ``message`` is None until the server confirms it."""

    content: str
    sender_id: int
    created_at: datetime
    client_id: str | None = None
    message: MessageResponse | None = None
    failed: bool = False

    @property
    def pending(self) -> bool:
        return self.message is None and not self.failed

    @property
    def message_id(self) -> int | None:
        return self.message.id if self.message is not None else None


class ConversationView:
    """Ordered, de-duplicated view of the thread between two users."""

    def __init__(self, user_id: int, peer_id: int) -> None:
        self.user_id = user_id
        self.peer_id = peer_id
        self._entries: list[ThreadEntry] = []

    @property
    def entries(self) -> list[ThreadEntry]:
        return list(self._entries)

    @property
    def messages(self) -> list[MessageResponse]:
        """Confirmed messages only, oldest first."""
        return [entry.message for entry in self._entries if entry.message is not None]

    def belongs(self, message: MessageResponse) -> bool:
        """True if ``message`` was exchanged between the two users of this view."""
        return {message.sender_id, message.receiver_id} == {self.user_id, self.peer_id}

    def add_placeholder(self, client_id: str, content: str) -> ThreadEntry:
        """Show a message the user just sent before the server confirms it."""
        entry = ThreadEntry(
            content=content,
            sender_id=self.user_id,
            created_at=utcnow(),
            client_id=client_id,
        )
        self._entries.append(entry)
        return entry

    def mark_failed(self, client_id: str) -> bool:
        """Flag the placeholder for ``client_id`` as not sent."""
        for entry in self._entries:
            if entry.client_id == client_id and entry.message is None:
                entry.failed = True
                return True
        return False

    def apply(self, message: MessageResponse) -> bool:
        """Merge a server copy of a message.

        Returns:
            True if the thread gained a row, False if an existing row was
            updated or the message belongs to another thread.
        """
        if not self.belongs(message):
            return False

        for entry in self._entries:
            if entry.message_id == message.id:
                entry.message = message
                return False

        placeholder = self._match_placeholder(message)
        if placeholder is not None:
            placeholder.message = message
            placeholder.failed = False
            placeholder.created_at = message.created_at
            placeholder.content = message.content
            self._sort()
            return False

        self._entries.append(
            ThreadEntry(
                content=message.content,
                sender_id=message.sender_id,
                created_at=message.created_at,
                client_id=message.client_id,
                message=message,
            )
        )
        self._sort()
        return True

    def replace_all(self, messages: list[MessageResponse]) -> None:
        """Adopt a REST refresh; unconfirmed placeholders it does not cover survive."""
        self._entries = [entry for entry in self._entries if entry.message is None]
        for message in messages:
            self.apply(message)

    def remove(self, message_id: int) -> bool:
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.message_id != message_id]
        return len(self._entries) != before

    def clear(self) -> None:
        self._entries = []

    def _match_placeholder(self, message: MessageResponse) -> ThreadEntry | None:
        if message.sender_id != self.user_id:
            return None
        unconfirmed = [entry for entry in self._entries if entry.message is None]
        if message.client_id is not None:
            for entry in unconfirmed:
                if entry.client_id == message.client_id:
                    return entry
            return None
        # Servers that drop the client id still echo the content.
        for entry in unconfirmed:
            if entry.content == message.content:
                return entry
        return None

    def _sort(self) -> None:
        # Placeholders stay after every confirmed message until the server assigns an id.
        self._entries.sort(
            key=lambda entry: (
                entry.message is None,
                entry.created_at,
                entry.message_id or 0,
            )
        )

    # Live updates

    def bind(self, client: RealtimeClient) -> None:
        """Keep the view current from ``client``'s relay events."""
        client.on("new_message", self.handle_event)
        client.on("message_deleted", self.handle_event)
        client.on("conversation_deleted", self.handle_event)
        client.on("error", self.handle_event)

    def handle_event(self, event: OutboundEvent) -> None:
        """Apply one relay event to the view."""
        if isinstance(event, NewMessageEvent):
            self.apply(event.message)
        elif isinstance(event, MessageDeletedEvent):
            self.remove(event.message_id)
        elif isinstance(event, ConversationDeletedEvent):
            if event.with_user == self.peer_id:
                self.clear()
        elif isinstance(event, ErrorEvent):
            if event.client_id is not None and self.mark_failed(event.client_id):
                logger.info("Message %s rejected: %s", event.client_id, event.message)
