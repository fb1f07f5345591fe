"""Client-side realtime channel, REST fallback and thread state."""

from .api import MessagesApi, MessagesApiError
from .realtime import ConnectionState, RealtimeClient
from .sender import MessageSender, SendOutcome
from .typing_notifier import TypingNotifier
from .view import ConversationView, ThreadEntry

__all__ = [
    "ConnectionState",
    "ConversationView",
    "MessageSender",
    "MessagesApi",
    "MessagesApiError",
    "RealtimeClient",
    "SendOutcome",
    "ThreadEntry",
    "TypingNotifier",
]
