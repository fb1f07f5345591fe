"""Event-emission hooks for collaborators outside the messaging core.

Notification fan-out and feed invalidation subscribe here instead of being
called directly by the relay.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class HookTopic(str, enum.Enum):
    """Lifecycle events emitted by the messaging core."""

    MESSAGE_CREATED = "message_created"
    MESSAGE_DELETED = "message_deleted"
    CONVERSATION_DELETED = "conversation_deleted"


HookHandler = Callable[[dict[str, Any]], Awaitable[None]]


class MessagingHooks:
    """In-process pub/sub for messaging lifecycle events."""

    def __init__(self) -> None:
        self._subscribers: dict[HookTopic, list[HookHandler]] = {
            topic: [] for topic in HookTopic
        }

    def subscribe(self, topic: HookTopic, handler: HookHandler) -> Callable[[], None]:
        """Register ``handler`` for ``topic`` and return an unsubscribe callable."""
        self._subscribers[topic].append(handler)

        def _unsubscribe() -> None:
            if handler in self._subscribers[topic]:
                self._subscribers[topic].remove(handler)

        return _unsubscribe

    async def emit(self, topic: HookTopic, payload: dict[str, Any]) -> None:
        """Call every subscriber of ``topic`` concurrently.

        Subscriber failures are logged and never reach the emitter.
        """
        handlers = list(self._subscribers.get(topic, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(payload) for handler in handlers],
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error("Hook %r for %s failed: %s", handler, topic.value, result)
