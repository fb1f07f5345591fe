"""Server-side handle for one accepted WebSocket connection."""

from __future__ import annotations

import logging
import uuid

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from blogx_chat.schemas.events import RelayEvent

logger = logging.getLogger(__name__)


class Channel:
    """A live, bidirectional connection to one client.

    The channel starts anonymous; ``identity`` is set by the relay once the
    identity handshake succeeds. Channels hash by object identity so the
    registry can match closes against the exact connection that registered.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.channel_id = uuid.uuid4().hex
        self.identity: int | None = None

    @property
    def identified(self) -> bool:
        """True once the identity handshake has bound a user to this channel."""
        return self.identity is not None

    @property
    def is_open(self) -> bool:
        """True while both sides of the socket are connected."""
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_event(self, event: RelayEvent) -> bool:
        """Write ``event`` to the socket.

        Returns:
            False if the socket is closed or the write failed; never raises.
        """
        if not self.is_open:
            return False
        try:
            await self.websocket.send_text(event.to_wire())
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.debug("Write to channel %s failed: %s", self.channel_id, exc)
            return False
        return True

    async def close(self, code: int = 1000) -> None:
        """Close the socket if it is still open."""
        if not self.is_open:
            return
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as exc:
            logger.debug("Closing channel %s failed: %s", self.channel_id, exc)

    def __repr__(self) -> str:
        return f"<Channel {self.channel_id} identity={self.identity}>"
