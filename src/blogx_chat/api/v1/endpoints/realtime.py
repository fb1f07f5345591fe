"""WebSocket endpoint carrying the realtime relay protocol."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from blogx_chat.api.v1.dependencies import SessionFactoryDep
from blogx_chat.core.settings import settings
from blogx_chat.repositories.message_repo import MessageRepository
from blogx_chat.services.channel import Channel
from blogx_chat.services.relay import MessageRelay

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket(settings.relay_ws_path)
async def relay_socket(websocket: WebSocket, session_factory: SessionFactoryDep) -> None:
    """Accept a live channel and feed its frames to the relay in order.

    Each frame gets its own short-lived session; an idle channel holds no
    pooled database connection.
    """
    relay: MessageRelay = websocket.app.state.relay
    await websocket.accept()
    channel = Channel(websocket)
    logger.debug("Channel %s opened", channel.channel_id)

    await relay.open(channel)
    try:
        while True:
            raw = await websocket.receive_text()
            with session_factory() as db:
                await relay.handle(channel, raw, MessageRepository(db))
    except WebSocketDisconnect as exc:
        logger.debug("Channel %s closed with code %s", channel.channel_id, exc.code)
    finally:
        relay.disconnect(channel)
