"""Send, read and delete operations shared by the REST API and the relay.

Both delivery paths funnel through :class:`MessagingService`, so a logical
send is persisted in exactly one place and produces the same side effects
whether it arrived over the socket or over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from blogx_chat.core.settings import settings
from blogx_chat.models import DirectMessage, MessageKind
from blogx_chat.repositories.message_repo import ConversationRow, MessageRepository
from blogx_chat.schemas.direct_message import MessageResponse, SharedPostPreview
from blogx_chat.services.errors import MessagePermissionError, MessageValidationError
from blogx_chat.services.previews import build_shared_preview
from blogx_chat.utils.identity import coerce_user_id

if TYPE_CHECKING:
    from blogx_chat.services.relay import MessageRelay

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send.

    ``created`` is False when the client's idempotency key matched a message
    stored earlier; in that case no side effects are repeated.
    """

    message: DirectMessage
    response: MessageResponse
    created: bool
    delivered: bool


class MessagingService:
    """Coordinates the message store with live delivery."""

    def __init__(self, repository: MessageRepository, relay: MessageRelay | None = None) -> None:
        self.repository = repository
        self.relay = relay

    async def send(
        self,
        sender_id: int,
        receiver_id: int,
        content: str,
        *,
        kind: MessageKind | str = MessageKind.TEXT,
        shared_post_id: int | None = None,
        shared_preview: SharedPostPreview | None = None,
        client_id: str | None = None,
    ) -> SendResult:
        """Persist a message once, then fan it out to live channels.

        Raises:
            MessageValidationError: For malformed input or unknown users.
            MessagePersistenceError: If the database write fails.
        """
        sender = coerce_user_id(sender_id)
        receiver = coerce_user_id(receiver_id)
        if sender is None or receiver is None:
            raise MessageValidationError("Sender and receiver must be valid user ids")
        if sender == receiver and not settings.allow_self_messages:
            raise MessageValidationError("Cannot send a message to yourself")

        message, created = await asyncio.to_thread(
            self._persist,
            sender,
            receiver,
            content,
            kind,
            shared_post_id,
            shared_preview,
            client_id,
        )
        response = MessageResponse.from_model(message)

        delivered = False
        if created:
            logger.info("Stored message %s from %s to %s", message.id, sender, receiver)
            if self.relay is not None:
                delivered = await self.relay.publish_new_message(response)
        else:
            logger.info(
                "Message %s from %s already stored under client id %s",
                message.id,
                sender,
                client_id,
            )
        return SendResult(message=message, response=response, created=created, delivered=delivered)

    def _persist(
        self,
        sender: int,
        receiver: int,
        content: str,
        kind: MessageKind | str,
        shared_post_id: int | None,
        shared_preview: SharedPostPreview | None,
        client_id: str | None,
    ) -> tuple[DirectMessage, bool]:
        repo = self.repository
        if client_id is not None:
            existing = repo.find_by_client_id(sender, client_id)
            if existing is not None:
                return existing, False

        if not repo.user_exists(sender):
            raise MessageValidationError("Sender not found", not_found=True)
        if not repo.user_exists(receiver):
            raise MessageValidationError("Recipient not found", not_found=True)

        if kind == MessageKind.SHARED_POST or kind == MessageKind.SHARED_POST.value:
            if shared_post_id is None:
                raise MessageValidationError("Shared-post messages require a post id")
            post = repo.get_post(shared_post_id)
            if post is None:
                raise MessageValidationError("Shared post not found", not_found=True)
            if shared_preview is None:
                shared_preview = build_shared_preview(post, settings.shared_excerpt_length)
        else:
            shared_post_id = None
            shared_preview = None

        message = repo.create_message(
            sender,
            receiver,
            content,
            kind,
            shared_post_id=shared_post_id,
            shared_preview=shared_preview,
            client_id=client_id,
        )
        return message, True

    async def open_thread(
        self,
        viewer_id: int,
        peer_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DirectMessage]:
        """Return a page of the thread and mark the peer's messages read.

        Raises:
            MessageValidationError: If ``peer_id`` names no account.
        """

        def _open() -> list[DirectMessage]:
            if not self.repository.user_exists(peer_id):
                raise MessageValidationError("User not found", not_found=True)
            messages = self.repository.list_messages(viewer_id, peer_id, limit, offset)
            self.repository.mark_all_read(peer_id, viewer_id)
            return messages

        return await asyncio.to_thread(_open)

    async def list_conversations(self, user_id: int) -> list[ConversationRow]:
        """Return the conversation summaries for ``user_id``."""
        return await asyncio.to_thread(self.repository.list_conversations, user_id)

    async def mark_read(self, reader_id: int, message_id: int) -> bool:
        """Mark one message read on behalf of its receiver.

        Returns False when the message does not exist.

        Raises:
            MessagePermissionError: If ``reader_id`` is not the receiver.
        """

        def _mark() -> bool:
            message = self.repository.get_message(message_id)
            if message is None:
                return False
            if message.receiver_id != reader_id:
                raise MessagePermissionError("Only the recipient can mark a message read")
            return self.repository.mark_read(message_id)

        return await asyncio.to_thread(_mark)

    async def mark_all_read(self, reader_id: int, peer_id: int) -> int:
        """Mark everything ``peer_id`` sent to ``reader_id`` as read."""
        return await asyncio.to_thread(self.repository.mark_all_read, peer_id, reader_id)

    async def delete_message(self, actor_id: int, message_id: int) -> int:
        """Hard-delete a message owned by ``actor_id``.

        Returns the number of rows removed; 0 when it was already gone.

        Raises:
            MessagePermissionError: If ``actor_id`` did not send the message.
        """

        def _delete() -> int | None:
            message = self.repository.get_message(message_id)
            if message is None:
                return None
            if message.sender_id != actor_id:
                raise MessagePermissionError("Only the sender can delete a message")
            receiver_id = message.receiver_id
            self.repository.delete_message(message_id)
            return receiver_id

        receiver_id = await asyncio.to_thread(_delete)
        if receiver_id is None:
            return 0

        logger.info("Message %s deleted by %s", message_id, actor_id)
        if self.relay is not None:
            await self.relay.publish_message_deleted(
                message_id, sender_id=actor_id, receiver_id=receiver_id
            )
        return 1

    async def delete_conversation(self, actor_id: int, peer_id: int) -> int:
        """Delete the whole thread between ``actor_id`` and ``peer_id``.

        Either participant may call this; it is unconditional and
        irreversible. Returns the number of messages removed.
        """
        deleted = await asyncio.to_thread(
            self.repository.delete_conversation, actor_id, peer_id
        )
        logger.info(
            "Conversation between %s and %s deleted (%s messages)", actor_id, peer_id, deleted
        )
        if self.relay is not None:
            await self.relay.publish_conversation_deleted(actor_id, peer_id, deleted)
        return deleted

