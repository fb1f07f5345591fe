"""Single-path message sending with REST fallback."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Literal

from blogx_chat.client.api import MessagesApi, MessagesApiError
from blogx_chat.client.realtime import RealtimeClient
from blogx_chat.client.typing_notifier import TypingNotifier
from blogx_chat.client.view import ConversationView
from blogx_chat.schemas.direct_message import MessageResponse, SharedPostPreview

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    """How a send left the client.

    ``message`` is only known immediately for REST sends; socket sends are
    confirmed later by the server's echo.
    """

    client_id: str
    via: Literal["socket", "rest"]
    message: MessageResponse | None = None


class MessageSender:
    """Sends each message over exactly one path.

    The live channel is tried first. If it refuses the write (not
    identified, or the socket write failed) the same message, under the same
    client id, goes through REST instead. The server persists a socket
    send itself, so the two paths are never both used for one send.
    """

    def __init__(
        self,
        realtime: RealtimeClient,
        api: MessagesApi,
        *,
        view: ConversationView | None = None,
        typing: TypingNotifier | None = None,
    ) -> None:
        self.realtime = realtime
        self.api = api
        self.view = view
        self.typing = typing

    async def send(
        self,
        receiver_id: int,
        content: str,
        *,
        message_type: Literal["text", "shared_post"] = "text",
        shared_post_id: int | None = None,
        shared_preview: SharedPostPreview | None = None,
    ) -> SendOutcome:
        """Send one message.

        Raises:
            MessagesApiError: If the fallback REST call fails too.
        """
        client_id = uuid.uuid4().hex
        if self.typing is not None:
            await self.typing.stop()
        if self.view is not None:
            self.view.add_placeholder(client_id, content)

        sent = await self.realtime.send_direct_message(
            receiver_id,
            content,
            message_type=message_type,
            shared_post_id=shared_post_id,
            shared_preview=shared_preview,
            client_id=client_id,
        )
        if sent:
            return SendOutcome(client_id=client_id, via="socket")

        logger.info("Live channel unavailable; sending %s over REST", client_id)
        try:
            message = await self.api.send_message(
                receiver_id,
                content,
                message_type=message_type,
                shared_post_id=shared_post_id,
                shared_preview=shared_preview,
                client_id=client_id,
            )
        except MessagesApiError:
            if self.view is not None:
                self.view.mark_failed(client_id)
            raise

        if self.view is not None:
            self.view.apply(message)
        return SendOutcome(client_id=client_id, via="rest", message=message)
