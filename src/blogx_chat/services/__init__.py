"""Business logic services for the BlogX Chat application."""

from .errors import (
    MessagePermissionError,
    MessagePersistenceError,
    MessageValidationError,
    MessagingError,
)

__all__ = [
    "MessagePermissionError",
    "MessagePersistenceError",
    "MessageValidationError",
    "MessagingError",
]
