"""Connection registry mapping user identities to their live channel.

The registry is the only shared mutable structure of the relay. It holds at
most one channel per identity: registering again replaces the previous
binding (last writer wins) without closing the old channel. Removal is keyed
by the channel object, so a late close from a replaced channel never evicts
its successor.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from blogx_chat.db.time import utcnow

logger = logging.getLogger(__name__)

ChannelT = TypeVar("ChannelT", bound=Hashable)


@dataclass(frozen=True)
class RegistryEntry(Generic[ChannelT]):
    """Immutable binding of an identity to a channel."""

    identity: int
    channel: ChannelT
    registered_at: datetime


@dataclass(frozen=True)
class Presence:
    """Online status derived from the registry at lookup time."""

    is_online: bool
    last_active_at: datetime | None = None


class ConnectionRegistry(Generic[ChannelT]):
    """Thread-safe identity to channel map.

    Entries are replaced wholesale under a lock, never mutated in place, so
    readers always observe either the old or the new binding.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[int, RegistryEntry[ChannelT]] = {}
        self._owners: dict[ChannelT, int] = {}
        self._last_active: dict[int, datetime] = {}

    def register(self, identity: int, channel: ChannelT) -> ChannelT | None:
        """Bind ``channel`` to ``identity``, replacing any previous binding.

        Returns:
            The channel that was displaced, if any. It is left open.
        """
        entry = RegistryEntry(identity=identity, channel=channel, registered_at=utcnow())
        with self._lock:
            previous_identity = self._owners.get(channel)
            if previous_identity is not None and previous_identity != identity:
                # Channel re-identified as someone else: drop its old binding.
                current = self._entries.get(previous_identity)
                if current is not None and current.channel is channel:
                    del self._entries[previous_identity]
                    self._last_active[previous_identity] = entry.registered_at

            displaced = self._entries.get(identity)
            if displaced is not None and displaced.channel is not channel:
                self._owners.pop(displaced.channel, None)

            self._entries[identity] = entry
            self._owners[channel] = identity
            self._last_active.pop(identity, None)

        if displaced is not None and displaced.channel is not channel:
            logger.info("Replaced live channel for user %s", identity)
            return displaced.channel
        return None

    def lookup(self, identity: int) -> ChannelT | None:
        """Return the channel bound to ``identity`` or None when offline."""
        entry = self._entries.get(identity)
        return entry.channel if entry is not None else None

    def unregister(self, channel: ChannelT) -> bool:
        """Remove ``channel``'s binding if it is still the current one.

        Returns:
            True if an entry was removed; False for unknown or stale channels.
        """
        with self._lock:
            identity = self._owners.pop(channel, None)
            if identity is None:
                return False
            entry = self._entries.get(identity)
            if entry is None or entry.channel is not channel:
                return False
            del self._entries[identity]
            self._last_active[identity] = utcnow()
        logger.info("User %s went offline", identity)
        return True

    def presence(self, identity: int) -> Presence:
        """Return the live presence of ``identity``."""
        with self._lock:
            if identity in self._entries:
                return Presence(is_online=True)
            return Presence(is_online=False, last_active_at=self._last_active.get(identity))

    def online_identities(self) -> list[int]:
        """Return a snapshot of every identity with a live channel."""
        with self._lock:
            return list(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)
