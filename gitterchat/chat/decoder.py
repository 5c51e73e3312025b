"""
Newline-delimited JSON decoding for the message stream.
"""

from typing import Protocol

from pydantic import ValidationError

from gitterchat.chat.exceptions import GitterDecodeError
from gitterchat.chat.models import Message


class LineReader(Protocol):
    async def readline(self) -> bytes: ...


class DecodeError(GitterDecodeError):
    """A stream line could not be decoded into a message."""

    def __init__(self, line: bytes, reason: str):
        super().__init__(f"Undecodable stream line ({reason}): {line[:200]!r}")
        self.line = line
        self.reason = reason


class LineDecoder:
    """
    Reads one line at a time from a byte stream and decodes it as a Message.

    ``read_line`` surfaces read failures (including end of stream) as
    exceptions so the caller can reconnect; ``decode`` reports bad records
    with :class:`DecodeError` so the caller can skip them.
    """

    @staticmethod
    async def read_line(reader: LineReader) -> bytes:
        """
        Read the next newline-terminated line.

        Raises:
            EOFError: If the stream ended
        """
        line = await reader.readline()
        if not line:
            raise EOFError("Stream ended")
        return line

    @staticmethod
    def is_keepalive(line: bytes) -> bool:
        """The server periodically sends whitespace-only lines."""
        return not line.strip()

    @staticmethod
    def decode(line: bytes) -> Message:
        """
        Parse a single line into a Message.

        Raises:
            DecodeError: If the line is not a JSON message object
        """
        try:
            return Message.model_validate_json(line.strip())
        except ValidationError as e:
            raise DecodeError(line, f"{e.error_count()} validation error(s)") from e

