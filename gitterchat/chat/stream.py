"""
Room message stream: connection with linear backoff, line decoding and
event delivery.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

from gitterchat.chat.decoder import DecodeError, LineDecoder
from gitterchat.chat.exceptions import GitterConnectionError, StreamError
from gitterchat.chat.models import Message
from gitterchat.chat.reconnect import CloseReason, ConnectionState

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ResponseSource(Protocol):
    async def get_response(self, url: str) -> Any: ...


class Event:
    """Base class for everything delivered on a stream's event channel."""


@dataclass
class MessageReceived(Event):
    message: Message


@dataclass
class ConnectionClosed(Event):
    """Terminal event. Always the last one a stream delivers."""

    reason: CloseReason = CloseReason.CLOSED


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


_CHANNEL_CLOSED = object()


class EventChannel:
    """
    Unbuffered single-producer/single-consumer channel.

    ``send`` returns only once the consumer has taken the event, so a slow
    consumer holds up decoding instead of events piling up.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: Event) -> None:
        if self._closed:
            raise StreamError("Cannot send on a closed event channel")
        await self._queue.put(event)
        await self._queue.join()

    async def receive(self) -> Optional[Event]:
        """Next event, or None once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        self._queue.task_done()
        if item is _CHANNEL_CLOSED:
            return None
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A pending event stays in the queue; the consumer sees it first.
        if self._queue.empty():
            self._queue.put_nowait(_CHANNEL_CLOSED)

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> Event:
        event = await self.receive()
        if event is None:
            raise StopAsyncIteration
        return event


class Stream:
    """
    One subscription to a room's message stream.

    Created by :meth:`Gitter.stream`; run with :meth:`listen` (once) and
    consumed by iterating :attr:`events` (or the stream itself) from
    another task. :meth:`close` may be called from anywhere at any time.
    """

    def __init__(
        self,
        url: str,
        gitter: ResponseSource,
        wait: float = 3.0,
        max_retries: int = 5,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize stream.

        Args:
            url: Full stream endpoint URL
            gitter: Client used to open authenticated GET requests
            wait: Backoff unit in seconds; retry n waits ``wait * n``
            max_retries: Consecutive failed connects before giving up
            sleep: Coroutine function used for backoff waits
        """
        self.url = url
        self.events = EventChannel()
        self.connection = ConnectionState(wait=wait, max_retries=max_retries)
        self._gitter = gitter
        self._sleep = sleep
        self._listened = False
        self._phase = StreamState.IDLE
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> StreamState:
        if self.connection.terminal:
            return StreamState.CLOSED
        return self._phase

    def close(self) -> None:
        """
        Stop the stream. Idempotent; unblocks a pending read.

        Safe to call from any thread. Off the listening loop, the response
        is closed on that loop so a blocked read is woken.
        """
        release = None
        loop = self._loop
        if loop is not None and not loop.is_closed() and not _is_running_loop(loop):
            release = self._release_on_loop

        if self.connection.mark_closed(CloseReason.CLOSED, release=release):
            logger.info(f"Stream {self.url} closed by request")

    def _release_on_loop(self, response: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(self.connection.release_response, response)
        except RuntimeError:
            # Loop already closed; nothing is left waiting on the read.
            self.connection.release_response(response)

    async def connect(self) -> bool:
        """
        Open the stream, retrying failed attempts with linear backoff.

        Returns:
            True if a response is now live, False if the stream is closed
            (retries exhausted or closed while connecting)
        """
        conn = self.connection

        while True:
            if conn.terminal:
                return False

            if conn.exhausted:
                conn.mark_closed(CloseReason.RETRIES_EXHAUSTED)
                logger.error(
                    f"Number of retries exceeded the max retries number "
                    f"({conn.max_retries}), giving up on {self.url}"
                )
                return False

            self._phase = StreamState.CONNECTING

            response = None
            try:
                response = await self._gitter.get_response(self.url)
            except GitterConnectionError as e:
                logger.warning(f"Failed to get response, trying reconnect: {e}")
            else:
                if response.status != 200:
                    logger.warning(
                        f"Failed to get response, trying reconnect: HTTP {response.status}"
                    )
                    conn.release_response(response)
                    response = None

            if response is None:
                retries = conn.record_failure()
                await self._sleep(conn.backoff(retries))
                continue

            if not conn.record_connected(response):
                return False

            self._phase = StreamState.CONNECTED
            logger.info(f"Response was received from {self.url}")
            return True

    async def _read_line(self) -> Optional[bytes]:
        """
        Read one line from the live response.

        Returns None if the read failed, after logging why.
        """
        response = self.connection.response
        if response is None:
            return None

        try:
            return await LineDecoder.read_line(response.content)
        except EOFError:
            logger.info("Stream ended")
        except Exception as e:
            logger.warning(f"Stream read failed: {e}", exc_info=True)

        self._phase = StreamState.CONNECTING
        self.connection.release_response(response)
        return None

    async def listen(self) -> None:
        """
        Deliver events until the stream reaches its terminal state.

        Never raises once started; failures show up as reconnects and, in
        the end, a single ConnectionClosed event. The event channel is
        closed on return.

        Raises:
            StreamError: If this stream has already been listened on
        """
        if self._listened:
            raise StreamError("Stream has already been listened on")
        self._listened = True
        self._loop = asyncio.get_running_loop()

        conn = self.connection
        try:
            await self.connect()

            while True:
                if conn.closed:
                    reason = conn.close_reason or CloseReason.CLOSED
                    await self.events.send(ConnectionClosed(reason=reason))
                    break

                line = await self._read_line()

                if conn.closed:
                    continue

                if line is None:
                    await self.connect()
                    continue

                if LineDecoder.is_keepalive(line):
                    logger.debug("Received keep-alive")
                    continue

                try:
                    message = LineDecoder.decode(line)
                except DecodeError as e:
                    logger.warning(str(e))
                    continue

                await self.events.send(MessageReceived(message=message))

        finally:
            conn.mark_closed(CloseReason.CLOSED)
            self.events.close()
            logger.info("Listening was completed")

    def __aiter__(self) -> AsyncIterator[Event]:
        return self.events.__aiter__()


def _is_running_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
