"""
Main Gitter client: REST calls and room message streams.
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, List, Optional, TextIO, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from gitterchat.chat.exceptions import GitterAPIError, GitterDecodeError
from gitterchat.chat.http import HttpTransport
from gitterchat.chat.models import Message, Pagination, Room, User
from gitterchat.chat.stream import Sleep, Stream

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.gitter.im/v1/"
DEFAULT_STREAM_BASE_URL = "https://stream.gitter.im/v1/"

DEFAULT_STREAM_WAIT = 3.0
DEFAULT_STREAM_MAX_RETRIES = 5

ModelT = TypeVar("ModelT", bound=BaseModel)


class Gitter:
    """
    Gitter API client.

    Usage:
        async with Gitter("YOUR_ACCESS_TOKEN") as gitter:
            user = await gitter.get_user()
            stream = gitter.stream(room_id)
            listener = asyncio.create_task(gitter.listen(stream))
            async for event in stream:
                ...
    """

    def __init__(
        self,
        token: str,
        *,
        api_base_url: str = DEFAULT_API_BASE_URL,
        stream_base_url: str = DEFAULT_STREAM_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize client.

        Args:
            token: Personal access token
            api_base_url: Base URL of the REST API
            stream_base_url: Base URL of the streaming API
            session: Optional aiohttp session to use instead of an owned one
            timeout: Timeout in seconds for REST calls
        """
        self._token = token
        self.api_base_url = _with_slash(api_base_url)
        self.stream_base_url = _with_slash(stream_base_url)
        self._http = HttpTransport(token, session=session, timeout=timeout)
        self._debug_handler: Optional[logging.Handler] = None

    @property
    def token(self) -> str:
        return self._token

    def set_client(self, session: aiohttp.ClientSession) -> None:
        """Use your own aiohttp session. The caller stays responsible for closing it."""
        self._http.set_session(session)

    def set_debug(self, debug: bool, log_writer: Optional[TextIO] = None) -> None:
        """
        Trace client activity.

        With ``log_writer`` set, records are written there prefixed with an
        RFC 3339 timestamp; otherwise they go to stderr.
        """
        package_logger = logging.getLogger("gitterchat")

        if self._debug_handler is not None:
            package_logger.removeHandler(self._debug_handler)
            self._debug_handler = None

        if not debug:
            package_logger.setLevel(logging.NOTSET)
            return

        handler = logging.StreamHandler(log_writer or sys.stderr)
        handler.setFormatter(_RFC3339Formatter("%(asctime)s: %(message)s"))
        package_logger.addHandler(handler)
        package_logger.setLevel(logging.DEBUG)
        self._debug_handler = handler

    async def get_response(self, url: str) -> aiohttp.ClientResponse:
        """Open an authenticated GET request; see :meth:`HttpTransport.get_response`."""
        return await self._http.get_response(url)

    async def get_user(self) -> User:
        """
        Get the current user.

        Raises:
            GitterAPIError: If the API returned no user
        """
        users = await self._get_list(self.api_base_url + "user", User)
        if not users:
            logger.error("Failed to retrieve current user")
            raise GitterAPIError("Failed to retrieve current user")
        return users[0]

    async def get_user_rooms(self, user_id: str) -> List[Room]:
        """List the rooms a user is part of."""
        return await self._get_list(self.api_base_url + f"user/{user_id}/rooms", Room)

    async def get_rooms(self) -> List[Room]:
        """List the rooms the current user is in."""
        return await self._get_list(self.api_base_url + "rooms", Room)

    async def get_room(self, room_id: str) -> Room:
        data = await self._http.get_json(self.api_base_url + f"rooms/{room_id}")
        return _decode(Room, data)

    async def get_messages(
        self, room_id: str, pagination: Optional[Pagination] = None
    ) -> List[Message]:
        """
        List messages in a room.

        Args:
            room_id: Room ID
            pagination: Optional skip/before/after/limit parameters
        """
        params = pagination.to_params() if pagination else None
        return await self._get_list(
            self.api_base_url + f"rooms/{room_id}/chatMessages", Message, params=params
        )

    async def get_message(self, room_id: str, message_id: str) -> Message:
        data = await self._http.get_json(
            self.api_base_url + f"rooms/{room_id}/chatMessages/{message_id}"
        )
        return _decode(Message, data)

    async def send_message(self, room_id: str, text: str) -> Optional[Message]:
        """
        Send a message to a room.

        Returns:
            The created message, or None if the API replied without a body
        """
        data = await self._http.post_json(
            self.api_base_url + f"rooms/{room_id}/chatMessages", {"text": text}
        )
        if data is None:
            return None
        return _decode(Message, data)

    def stream(
        self,
        room_id: str,
        wait: float = DEFAULT_STREAM_WAIT,
        max_retries: int = DEFAULT_STREAM_MAX_RETRIES,
        sleep: Sleep = asyncio.sleep,
    ) -> Stream:
        """
        Prepare a message stream for a room. Nothing is opened until
        :meth:`listen` runs.

        Args:
            room_id: Room ID
            wait: Backoff unit in seconds; retry n waits ``wait * n``
            max_retries: Consecutive failed connects before the stream closes
            sleep: Coroutine function used for backoff waits
        """
        url = self.stream_base_url + f"rooms/{room_id}/chatMessages"
        return Stream(url, self, wait=wait, max_retries=max_retries, sleep=sleep)

    async def listen(self, stream: Stream) -> None:
        """Run ``stream`` until it closes; events arrive on ``stream.events``."""
        await stream.listen()

    async def close(self) -> None:
        """Close the HTTP session if the client owns it."""
        await self._http.close()

    async def __aenter__(self) -> "Gitter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_list(
        self, url: str, model: Type[ModelT], params: Optional[dict] = None
    ) -> List[ModelT]:
        data = await self._http.get_json(url, params=params)
        if not isinstance(data, list):
            raise GitterDecodeError(f"Expected a JSON array from {url}")
        return [_decode(model, item) for item in data]


def _decode(model: Type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise GitterDecodeError(f"Unexpected {model.__name__} payload: {e}") from e


def _with_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


class _RFC3339Formatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds")
