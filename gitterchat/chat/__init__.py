"""
Gitter API client with a self-reconnecting room message stream.
"""

from gitterchat.chat.client import Gitter
from gitterchat.chat.models import Issue, Mention, Message, Pagination, Room, User
from gitterchat.chat.reconnect import CloseReason
from gitterchat.chat.stream import (
    ConnectionClosed,
    Event,
    MessageReceived,
    Stream,
    StreamState,
)
from gitterchat.chat.exceptions import (
    ConfigError,
    GitterAPIError,
    GitterConnectionError,
    GitterDecodeError,
    GitterError,
    StreamError,
)

__all__ = [
    "Gitter",
    "Issue",
    "Mention",
    "Message",
    "Pagination",
    "Room",
    "User",
    "CloseReason",
    "ConnectionClosed",
    "Event",
    "MessageReceived",
    "Stream",
    "StreamState",
    "ConfigError",
    "GitterAPIError",
    "GitterConnectionError",
    "GitterDecodeError",
    "GitterError",
    "StreamError",
]
