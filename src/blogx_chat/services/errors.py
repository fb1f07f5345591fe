"""Exceptions raised by the messaging core."""

from __future__ import annotations


class MessagingError(RuntimeError):
    """Base exception for messaging failures."""

    code = "messaging_error"


class MessageValidationError(MessagingError):
    """Raised when a send or lookup is rejected before touching storage.

    Covers empty content, malformed identities, unknown users and malformed
    shared-post payloads. Never retried automatically.
    """

    code = "validation_error"

    def __init__(self, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


class MessagePermissionError(MessagingError):
    """Raised when the actor may not mutate the target message."""

    code = "forbidden"


class MessagePersistenceError(MessagingError):
    """Raised when the database could not store or update a message.

    The caller must not assume the message was delivered.
    """

    code = "persistence_error"
