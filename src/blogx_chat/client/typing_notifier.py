"""Typing indicator policy for one open thread."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from blogx_chat.core.settings import settings

if TYPE_CHECKING:
    from blogx_chat.client.realtime import RealtimeClient

logger = logging.getLogger(__name__)


class TypingNotifier:
    """Emits ``isTyping`` transitions for the user's keystrokes.

    The first keystroke sends ``true``. Every keystroke restarts an idle
    timer; when it fires, or when :meth:`stop` is called on send or on
    leaving the thread, ``false`` is sent. Indicators are best-effort: a
    client that is not identified simply drops them.
    """

    def __init__(
        self,
        client: RealtimeClient,
        receiver_id: int,
        *,
        idle_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.receiver_id = receiver_id
        self.idle_seconds = (
            settings.client_typing_idle_seconds if idle_seconds is None else idle_seconds
        )
        self.typing = False
        self._timer: asyncio.Task[None] | None = None

    async def keystroke(self) -> None:
        """Record input activity."""
        self._cancel_timer()
        if not self.typing:
            self.typing = True
            await self.client.send_typing(self.receiver_id, True)
        self._timer = asyncio.create_task(self._expire())

    async def stop(self) -> None:
        """End the typing state immediately."""
        self._cancel_timer()
        if self.typing:
            self.typing = False
            await self.client.send_typing(self.receiver_id, False)

    async def _expire(self) -> None:
        await asyncio.sleep(self.idle_seconds)
        self._timer = None
        logger.debug("Typing idle for %.1fs; clearing indicator", self.idle_seconds)
        await self.stop()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
