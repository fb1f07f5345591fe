"""Realtime relay between live channels.

The relay owns the connection registry and routes inbound frames:

- ``identity`` binds the channel to a user and registers it.
- ``direct_message`` is persisted exactly once through
  :class:`~blogx_chat.services.messaging.MessagingService`, forwarded to the
  receiver if online, echoed to the sender's registered channel and
  acknowledged on the originating channel.
- ``typing`` is forwarded if the receiver is online and dropped otherwise.

Each channel's frames are handled to completion in arrival order; database
work runs in a worker thread so other channels keep being served meanwhile.
Delivery is best-effort: a missing or broken receiver channel is never an
error for the sender, because the stored message is the source of truth.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from blogx_chat.core.security import decode_token_subject
from blogx_chat.core.settings import settings
from blogx_chat.repositories.message_repo import MessageRepository
from blogx_chat.schemas.direct_message import MessageResponse
from blogx_chat.schemas.events import (
    ConversationDeletedEvent,
    DirectMessageEvent,
    ErrorEvent,
    IdentifiedEvent,
    IdentityEvent,
    MessageDeletedEvent,
    MessageSentEvent,
    NewMessageEvent,
    NotificationEvent,
    RelayEvent,
    TypingEvent,
    TypingIndicatorEvent,
    WelcomeEvent,
    parse_inbound,
)
from blogx_chat.services.channel import Channel
from blogx_chat.services.errors import MessagePersistenceError, MessagingError
from blogx_chat.services.hooks import HookTopic, MessagingHooks
from blogx_chat.services.messaging import MessagingService
from blogx_chat.services.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class MessageRelay:
    """Routes relay events between identified channels."""

    def __init__(
        self,
        registry: ConnectionRegistry[Channel] | None = None,
        hooks: MessagingHooks | None = None,
        *,
        require_token: bool | None = None,
    ) -> None:
        self.registry: ConnectionRegistry[Channel] = registry or ConnectionRegistry()
        self.hooks = hooks or MessagingHooks()
        self.require_token = (
            settings.relay_require_token if require_token is None else require_token
        )

    # Channel lifecycle

    async def open(self, channel: Channel) -> None:
        """Greet a freshly accepted channel; it stays anonymous until identified."""
        await channel.send_event(
            WelcomeEvent(message=f"Connected to {settings.app_name} realtime server")
        )

    def disconnect(self, channel: Channel) -> None:
        """Forget ``channel``; a stale close never evicts a newer channel."""
        if self.registry.unregister(channel):
            logger.debug("Channel %s for user %s unregistered", channel.channel_id, channel.identity)

    async def handle(self, channel: Channel, raw: str | bytes, repository: MessageRepository) -> None:
        """Process one inbound frame from ``channel``.

        Never raises for client mistakes; failures are reported to the
        originating channel only.
        """
        try:
            event = parse_inbound(raw)
        except ValidationError as exc:
            logger.warning("Malformed frame on channel %s: %s", channel.channel_id, exc.errors()[:1])
            await channel.send_event(ErrorEvent(message="Malformed event", code="bad_event"))
            return

        if isinstance(event, IdentityEvent):
            await self._identify(channel, event, repository)
        elif isinstance(event, DirectMessageEvent):
            await self._direct_message(channel, event, repository)
        elif isinstance(event, TypingEvent):
            await self._typing(channel, event)
        else:  # pragma: no cover - the union above is closed
            logger.error("Unhandled relay event %r", event)
            await channel.send_event(ErrorEvent(message="Unsupported event", code="bad_event"))

    # Inbound handlers

    async def _identify(
        self, channel: Channel, event: IdentityEvent, repository: MessageRepository
    ) -> None:
        if self.require_token or event.token is not None:
            subject = decode_token_subject(event.token) if event.token else None
            if subject != event.user_id:
                logger.warning("Rejected identity %s on channel %s", event.user_id, channel.channel_id)
                await channel.send_event(
                    ErrorEvent(message="Could not validate identity", code="unauthorized")
                )
                return

        try:
            exists = await asyncio.to_thread(repository.user_exists, event.user_id)
        except MessagingError as exc:
            await channel.send_event(ErrorEvent(message=str(exc), code=exc.code))
            return
        if not exists:
            await channel.send_event(ErrorEvent(message="User not found", code="unknown_user"))
            return

        channel.identity = event.user_id
        self.registry.register(event.user_id, channel)
        logger.info("Channel %s identified as user %s", channel.channel_id, event.user_id)
        await channel.send_event(IdentifiedEvent(user_id=event.user_id))

    async def _direct_message(
        self, channel: Channel, event: DirectMessageEvent, repository: MessageRepository
    ) -> None:
        if not channel.identified:
            await channel.send_event(
                ErrorEvent(
                    message="Identify before sending messages",
                    code="not_identified",
                    client_id=event.client_id,
                )
            )
            return
        if event.sender != channel.identity:
            await channel.send_event(
                ErrorEvent(
                    message="Sender does not match channel identity",
                    code="forbidden",
                    client_id=event.client_id,
                )
            )
            return

        service = MessagingService(repository, relay=self)
        try:
            result = await service.send(
                event.sender,
                event.receiver,
                event.content,
                kind=event.message_type,
                shared_post_id=event.shared_blog_id,
                shared_preview=event.shared_blog_preview,
                client_id=event.client_id,
            )
        except MessagingError as exc:
            logger.info("Direct message from %s rejected: %s", event.sender, exc)
            await channel.send_event(
                ErrorEvent(message=str(exc), code=exc.code, client_id=event.client_id)
            )
            return
        except SQLAlchemyError:
            logger.exception("Direct message from %s could not be stored", event.sender)
            await asyncio.to_thread(repository.session.rollback)
            await channel.send_event(
                ErrorEvent(
                    message="Failed to store message",
                    code=MessagePersistenceError.code,
                    client_id=event.client_id,
                )
            )
            return

        await channel.send_event(
            MessageSentEvent(
                message_id=result.message.id,
                client_id=event.client_id,
                delivered=result.delivered,
            )
        )

    async def _typing(self, channel: Channel, event: TypingEvent) -> None:
        if not channel.identified or event.sender != channel.identity:
            return
        await self.deliver(
            event.receiver,
            TypingIndicatorEvent(sender=event.sender, is_typing=event.is_typing),
        )

    # Outbound fan-out

    async def deliver(self, identity: int, event: RelayEvent) -> bool:
        """Send ``event`` to ``identity``'s live channel if there is one.

        Returns:
            True if a channel accepted the write; False otherwise.
        """
        channel = self.registry.lookup(identity)
        if channel is None:
            logger.debug("User %s offline; %s not delivered", identity, event.__class__.__name__)
            return False
        delivered = await channel.send_event(event)
        if not delivered:
            logger.info("Delivery of %s to user %s failed", event.__class__.__name__, identity)
        return delivered

    async def publish_new_message(self, message: MessageResponse) -> bool:
        """Fan a freshly stored message out to both participants.

        Returns:
            True if the receiver's channel accepted the message.
        """
        delivered = await self.deliver(
            message.receiver_id, NewMessageEvent(message=message, is_sender=False)
        )
        await self.deliver(
            message.receiver_id,
            NotificationEvent(kind="message", from_user=message.sender_id, message_id=message.id),
        )
        await self.deliver(message.sender_id, NewMessageEvent(message=message, is_sender=True))
        await self._emit(
            HookTopic.MESSAGE_CREATED,
            {"message": message.model_dump(mode="json"), "delivered": delivered},
        )
        return delivered

    async def publish_message_deleted(self, message_id: int, *, sender_id: int, receiver_id: int) -> None:
        """Tell both participants a message is gone."""
        event = MessageDeletedEvent(message_id=message_id, recipient_id=receiver_id)
        await self.deliver(receiver_id, event)
        await self.deliver(sender_id, event)
        await self._emit(
            HookTopic.MESSAGE_DELETED,
            {"message_id": message_id, "sender_id": sender_id, "receiver_id": receiver_id},
        )

    async def publish_conversation_deleted(self, actor_id: int, peer_id: int, deleted: int) -> None:
        """Tell both participants their thread was removed."""
        await self.deliver(
            actor_id, ConversationDeletedEvent(with_user=peer_id, deleted_count=deleted)
        )
        await self.deliver(
            peer_id, ConversationDeletedEvent(with_user=actor_id, deleted_count=deleted)
        )
        await self._emit(
            HookTopic.CONVERSATION_DELETED,
            {"user_id": actor_id, "peer_id": peer_id, "deleted": deleted},
        )

    async def _emit(self, topic: HookTopic, payload: dict[str, Any]) -> None:
        await self.hooks.emit(topic, payload)
