"""gitterchat - Gitter API client with a reconnecting room message stream."""

from gitterchat.chat import (
    CloseReason,
    ConnectionClosed,
    Gitter,
    Message,
    MessageReceived,
    Pagination,
    Room,
    Stream,
    User,
)

__version__ = "0.1.0"

__all__ = [
    "CloseReason",
    "ConnectionClosed",
    "Gitter",
    "Message",
    "MessageReceived",
    "Pagination",
    "Room",
    "Stream",
    "User",
]
