"""Client side of the live channel.

:class:`RealtimeClient` keeps at most one socket open to the relay. Its
state machine is ``DISCONNECTED -> CONNECTING -> IDENTIFIED`` and back to
``DISCONNECTED`` on close or error. The client only counts as identified
once the server has acknowledged the handshake with an ``identified``
frame. After an unexpected close, a failed attempt or a handshake timeout,
exactly one reconnect is scheduled after a flat delay; a handshake the
server rejects is not retried. Sends never queue: while the client is not
identified they return False immediately so the caller can fall back to
the REST path.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

from pydantic import ValidationError
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from blogx_chat.core.settings import settings
from blogx_chat.schemas.direct_message import SharedPostPreview
from blogx_chat.schemas.events import (
    DirectMessageEvent,
    ErrorEvent,
    IdentifiedEvent,
    IdentityEvent,
    OutboundEvent,
    RelayEvent,
    TypingEvent,
    parse_outbound,
)

logger = logging.getLogger(__name__)

# Error codes meaning the server will never accept this identity as sent.
HANDSHAKE_REJECTIONS = frozenset({"unauthorized", "unknown_user"})


class ConnectionState(str, enum.Enum):
    """Lifecycle of the client's live channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFIED = "identified"


class RelayConnection(Protocol):
    """The subset of a websockets client connection the client relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[[str], Awaitable[RelayConnection]]
EventCallback = Callable[[OutboundEvent], Any]
LifecycleCallback = Callable[[], Any]


async def _default_connector(url: str) -> RelayConnection:
    connection: RelayConnection = await websocket_connect(url)
    return connection


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:  # noqa: BLE001 - listener failures must not kill the reader
        logger.exception("Realtime callback %r failed", callback)


class RealtimeClient:
    """One user's live connection to the relay.

    Args:
        url: WebSocket URL of the relay endpoint.
        user_id: Identity announced in the handshake.
        token: Optional bearer token sent with the handshake.
        reconnect_delay: Flat delay before the single reconnect attempt.
        handshake_timeout: How long to wait for the server's ``identified``.
        connector: Coroutine opening a connection; defaults to
            ``websockets.asyncio.client.connect``.
    """

    def __init__(
        self,
        url: str,
        user_id: int,
        *,
        token: str | None = None,
        reconnect_delay: float | None = None,
        handshake_timeout: float | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.url = url
        self.user_id = user_id
        self.token = token
        self.reconnect_delay = (
            settings.client_reconnect_delay_seconds if reconnect_delay is None else reconnect_delay
        )
        self.handshake_timeout = (
            settings.client_handshake_timeout_seconds
            if handshake_timeout is None
            else handshake_timeout
        )
        self._connector = connector or _default_connector
        self.state = ConnectionState.DISCONNECTED
        self.rejection: ErrorEvent | None = None
        self._connection: RelayConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._reconnect: asyncio.Task[None] | None = None
        self._handshake: asyncio.Future[OutboundEvent | None] | None = None
        self._closing = False
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)
        self._on_connect: list[LifecycleCallback] = []
        self._on_disconnect: list[LifecycleCallback] = []

    @property
    def identified(self) -> bool:
        return self.state is ConnectionState.IDENTIFIED

    @property
    def reconnect_pending(self) -> bool:
        """True while a reconnect attempt is scheduled."""
        return self._reconnect is not None and not self._reconnect.done()

    # Subscriptions

    def on(self, event_type: str, callback: EventCallback) -> Callable[[], None]:
        """Call ``callback`` for every inbound event of ``event_type``."""
        self._listeners[event_type].append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners[event_type]:
                self._listeners[event_type].remove(callback)

        return _unsubscribe

    def on_connect(self, callback: LifecycleCallback) -> None:
        self._on_connect.append(callback)

    def on_disconnect(self, callback: LifecycleCallback) -> None:
        self._on_disconnect.append(callback)

    # Lifecycle

    async def connect(self) -> bool:
        """Open the channel and complete the identity handshake.

        Cancels any pending reconnect first. Returns True once the server
        has acknowledged the identity. A failed or timed-out attempt
        schedules one reconnect; a rejected identity does not.
        """
        self._cancel_reconnect()
        self._closing = False
        if self.state is not ConnectionState.DISCONNECTED:
            return self.identified

        self.state = ConnectionState.CONNECTING
        self.rejection = None
        try:
            connection = await self._connector(self.url)
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as exc:
            logger.warning("Could not reach relay at %s: %s", self.url, exc)
            self.state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()
            return False

        handshake = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        self._connection = connection
        self._reader = asyncio.create_task(self._read_loop(connection))

        reply: OutboundEvent | None = None
        try:
            await connection.send(IdentityEvent(user_id=self.user_id, token=self.token).to_wire())
            reply = await asyncio.wait_for(asyncio.shield(handshake), self.handshake_timeout)
        except (ConnectionClosed, OSError) as exc:
            logger.warning("Relay closed during handshake: %s", exc)
        except asyncio.TimeoutError:
            logger.warning("Relay did not acknowledge identity within %.1fs", self.handshake_timeout)
        finally:
            self._handshake = None

        if isinstance(reply, IdentifiedEvent) and self.identified and self._connection is connection:
            logger.info("Connected to relay as user %s", self.user_id)
            for callback in list(self._on_connect):
                await _invoke(callback)
            return True

        await self._abandon(connection)
        if isinstance(reply, ErrorEvent) and reply.code in HANDSHAKE_REJECTIONS:
            logger.warning("Relay rejected identity %s: %s", self.user_id, reply.message)
            self.rejection = reply
        elif not self._closing:
            self._schedule_reconnect()
        return False

    async def disconnect(self) -> None:
        """Close the channel on purpose; no reconnect follows."""
        self._closing = True
        self._cancel_reconnect()
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)
        was_connected = self.identified
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        self.state = ConnectionState.DISCONNECTED

        await self._stop(reader, connection)
        if was_connected:
            for callback in list(self._on_disconnect):
                await _invoke(callback)

    async def _abandon(self, connection: RelayConnection) -> None:
        """Drop a connection whose handshake did not complete."""
        reader = None
        if self._connection is connection:
            self._connection = None
            reader, self._reader = self._reader, None
        self.state = ConnectionState.DISCONNECTED
        await self._stop(reader, connection)

    async def _stop(
        self, reader: asyncio.Task[None] | None, connection: RelayConnection | None
    ) -> None:
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if connection is not None:
            try:
                await connection.close()
            except (ConnectionClosed, OSError) as exc:
                logger.debug("Error while closing relay connection: %s", exc)

    async def _read_loop(self, connection: RelayConnection) -> None:
        try:
            async for raw in connection:
                await self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.info("Relay connection lost: %s", exc)
        except OSError as exc:
            logger.info("Relay connection failed: %s", exc)

        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)
        elif connection is self._connection and self.identified:
            await self._connection_lost()

    async def _connection_lost(self) -> None:
        self._connection = None
        self._reader = None
        self.state = ConnectionState.DISCONNECTED
        for callback in list(self._on_disconnect):
            await _invoke(callback)
        if not self._closing:
            self._schedule_reconnect()

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            event = parse_outbound(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed relay frame: %s", exc.errors()[:1])
            return

        handshake = self._handshake
        if handshake is not None and not handshake.done():
            if isinstance(event, IdentifiedEvent) and event.user_id == self.user_id:
                self.state = ConnectionState.IDENTIFIED
                handshake.set_result(event)
            elif isinstance(event, ErrorEvent):
                handshake.set_result(event)

        for callback in list(self._listeners.get(event.type, [])):
            await _invoke(callback, event)

    # Reconnect

    def _schedule_reconnect(self) -> None:
        if self._closing or self.reconnect_pending:
            return
        logger.info("Reconnecting to relay in %.1fs", self.reconnect_delay)
        self._reconnect = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect = self._reconnect, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # Sending

    async def send_event(self, event: RelayEvent) -> bool:
        """Write ``event`` if the channel is identified; never blocks or queues."""
        connection = self._connection
        if not self.identified or connection is None:
            return False
        try:
            await connection.send(event.to_wire())
        except (ConnectionClosed, OSError) as exc:
            logger.info("Relay write failed: %s", exc)
            return False
        return True

    async def send_direct_message(
        self,
        receiver_id: int,
        content: str,
        *,
        message_type: Literal["text", "shared_post"] = "text",
        shared_post_id: int | None = None,
        shared_preview: SharedPostPreview | None = None,
        client_id: str | None = None,
    ) -> bool:
        """Hand a message to the relay; False means the caller must use REST."""
        return await self.send_event(
            DirectMessageEvent(
                sender=self.user_id,
                receiver=receiver_id,
                content=content,
                message_type=message_type,
                shared_blog_id=shared_post_id,
                shared_blog_preview=shared_preview,
                client_id=client_id,
            )
        )

    async def send_typing(self, receiver_id: int, is_typing: bool) -> bool:
        return await self.send_event(
            TypingEvent(sender=self.user_id, receiver=receiver_id, is_typing=is_typing)
        )
