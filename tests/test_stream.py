"""Tests for the room message stream: reconnects, decoding and delivery."""

import asyncio
import logging
import threading

import pytest

from gitterchat.chat import Gitter
from gitterchat.chat.exceptions import GitterConnectionError, StreamError
from gitterchat.chat.reconnect import CloseReason
from gitterchat.chat.stream import (
    ConnectionClosed,
    EventChannel,
    MessageReceived,
    Stream,
    StreamState,
)

URL = "https://stream.test/v1/rooms/xyz/chatMessages"


class FakeContent:
    def __init__(self, lines, hold_open):
        self._lines = list(lines)
        self._hold_open = hold_open
        self._released = asyncio.Event()

    async def readline(self):
        if self._lines:
            line = self._lines.pop(0)
            if isinstance(line, Exception):
                raise line
            return line
        if self._hold_open:
            await self._released.wait()
            raise ConnectionResetError("Connection closed")
        return b""


class FakeResponse:
    """Stands in for aiohttp.ClientResponse."""

    def __init__(self, status=200, lines=(), hold_open=False, on_close=None):
        self.status = status
        self.content = FakeContent(lines, hold_open)
        self.close_calls = 0
        self.closed_on = None
        self._on_close = on_close

    def close(self):
        self.close_calls += 1
        self.closed_on = threading.get_ident()
        if self._on_close:
            self._on_close()
        self.content._released.set()


class FakeGitter:
    """Serves queued responses; answers 503 once the queue runs dry."""

    def __init__(self, responses=()):
        self._responses = list(responses)
        self.urls = []

    @property
    def calls(self):
        return len(self.urls)

    async def get_response(self, url):
        self.urls.append(url)
        item = self._responses.pop(0) if self._responses else FakeResponse(status=503)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClock:
    def __init__(self, on_sleep=None):
        self.sleeps = []
        self._on_sleep = on_sleep

    async def __call__(self, delay):
        self.sleeps.append(delay)
        if self._on_sleep:
            self._on_sleep()


async def collect(stream):
    listener = asyncio.create_task(stream.listen())
    events = [event async for event in stream]
    await listener
    return events


def ids(events):
    return [e.message.id for e in events if isinstance(e, MessageReceived)]


def test_two_messages_then_clean_close():
    """Test lines from one connection followed by a server that stops answering."""
    response = FakeResponse(lines=[b'{"id":"1"}\n', b'{"id":"2"}\n'])
    gitter = FakeGitter([response])
    clock = FakeClock()
    stream = Stream(URL, gitter, wait=0.1, max_retries=2, sleep=clock)

    async def run_test():
        events = await collect(stream)
        after = await stream.events.receive()
        return events, after

    events, after = asyncio.run(run_test())

    assert len(events) == 3
    assert isinstance(events[0], MessageReceived) and events[0].message.id == "1"
    assert isinstance(events[1], MessageReceived) and events[1].message.id == "2"
    assert events[2] == ConnectionClosed(reason=CloseReason.RETRIES_EXHAUSTED)
    assert after is None
    assert stream.events.closed
    assert response.close_calls >= 1
    assert gitter.urls == [URL] * 3


def test_always_unavailable_closes_after_max_retries():
    """Test that a 503 endpoint yields exactly one ConnectionClosed and no messages."""
    gitter = FakeGitter()
    clock = FakeClock()
    stream = Stream(URL, gitter, wait=0.1, max_retries=5, sleep=clock)

    events = asyncio.run(collect(stream))

    assert events == [ConnectionClosed(reason=CloseReason.RETRIES_EXHAUSTED)]
    assert gitter.calls == 5
    assert stream.state == StreamState.CLOSED
    assert stream.connection.retries == 0


def test_backoff_grows_linearly():
    """Test that the wait before retry k is wait * k, not exponential."""
    clock = FakeClock()
    stream = Stream(URL, FakeGitter(), wait=0.1, max_retries=3, sleep=clock)

    asyncio.run(collect(stream))

    assert clock.sleeps == pytest.approx([0.1, 0.2, 0.3])


def test_transport_error_counts_as_failed_attempt():
    """Test that network errors and bad statuses are retried alike, and success resets the count."""
    gitter = FakeGitter(
        [
            GitterConnectionError("connection refused"),
            FakeResponse(status=500),
            FakeResponse(lines=[b'{"id":"1"}\n']),
        ]
    )
    clock = FakeClock()
    stream = Stream(URL, gitter, wait=1.0, max_retries=3, sleep=clock)

    events = asyncio.run(collect(stream))

    assert ids(events) == ["1"]
    # Two failures before the first connect, then three after the stream ends.
    assert clock.sleeps == pytest.approx([1.0, 2.0, 1.0, 2.0, 3.0])
    assert isinstance(events[-1], ConnectionClosed)


def test_failed_response_is_released():
    rejected = FakeResponse(status=401)
    stream = Stream(URL, FakeGitter([rejected]), wait=0, max_retries=1, sleep=FakeClock())

    asyncio.run(collect(stream))

    assert rejected.close_calls == 1


def test_malformed_line_is_skipped():
    """Test that a bad line between two good ones produces exactly two messages."""
    response = FakeResponse(lines=[b'{"id":"1"}\n', b"{not json\n", b'{"id":"2"}\n'])
    stream = Stream(URL, FakeGitter([response]), wait=0, max_retries=1, sleep=FakeClock())

    events = asyncio.run(collect(stream))

    assert ids(events) == ["1", "2"]
    assert len(events) == 3


def test_keepalive_lines_produce_no_events():
    response = FakeResponse(lines=[b" \n", b'{"id":"1"}\n', b" \n"])
    stream = Stream(URL, FakeGitter([response]), wait=0, max_retries=1, sleep=FakeClock())

    events = asyncio.run(collect(stream))

    assert ids(events) == ["1"]


def test_reconnects_after_read_failure():
    """Test that a dropped connection is reopened and delivery resumes."""
    first = FakeResponse(lines=[b'{"id":"1"}\n'])
    second = FakeResponse(lines=[b'{"id":"2"}\n'])
    gitter = FakeGitter([first, second])
    stream = Stream(URL, gitter, wait=0, max_retries=1, sleep=FakeClock())

    events = asyncio.run(collect(stream))

    assert ids(events) == ["1", "2"]
    assert first.close_calls >= 1
    assert second.close_calls >= 1


def test_unexpected_read_error_is_logged_with_traceback(caplog):
    response = FakeResponse(lines=[RuntimeError("boom")])
    stream = Stream(URL, FakeGitter([response]), wait=0, max_retries=1, sleep=FakeClock())

    with caplog.at_level(logging.WARNING, logger="gitterchat.chat.stream"):
        events = asyncio.run(collect(stream))

    failures = [r for r in caplog.records if r.getMessage().startswith("Stream read failed")]
    assert len(failures) == 1
    assert failures[0].exc_info is not None
    assert events == [ConnectionClosed(reason=CloseReason.RETRIES_EXHAUSTED)]


def test_state_is_connecting_after_read_failure():
    """Test that a dropped connection stops reporting CONNECTED straight away."""
    holder = {}
    states = []

    def record_state():
        states.append(holder["stream"].state)

    dropped = FakeResponse(lines=[b'{"id":"1"}\n'], on_close=record_state)
    clock = FakeClock(on_sleep=record_state)
    stream = Stream(URL, FakeGitter([dropped]), wait=0, max_retries=1, sleep=clock)
    holder["stream"] = stream

    events = asyncio.run(collect(stream))

    assert ids(events) == ["1"]
    # Once when the dead response is released, once during the retry backoff.
    assert states == [StreamState.CONNECTING, StreamState.CONNECTING]


def test_close_while_idle_is_idempotent():
    """Test that closing before listening ends the stream with one ConnectionClosed."""
    gitter = FakeGitter([FakeResponse(lines=[b'{"id":"1"}\n'])])
    stream = Stream(URL, gitter, sleep=FakeClock())

    assert stream.state == StreamState.IDLE
    stream.close()
    stream.close()
    assert stream.state == StreamState.CLOSED

    events = asyncio.run(collect(stream))

    assert events == [ConnectionClosed(reason=CloseReason.CLOSED)]
    assert gitter.calls == 0


def test_close_while_connecting():
    """Test that closing during backoff stops further attempts."""
    gitter = FakeGitter()
    holder = {}
    clock = FakeClock(on_sleep=lambda: holder["stream"].close())
    stream = Stream(URL, gitter, wait=1.0, max_retries=5, sleep=clock)
    holder["stream"] = stream

    events = asyncio.run(collect(stream))

    assert events == [ConnectionClosed(reason=CloseReason.CLOSED)]
    assert gitter.calls == 1
    assert clock.sleeps == [1.0]


def test_close_after_message_ends_stream():
    """Test that closing from the consuming task ends the stream after the current event."""
    response = FakeResponse(lines=[b'{"id":"1"}\n'], hold_open=True)
    gitter = FakeGitter([response])
    stream = Stream(URL, gitter, sleep=FakeClock())

    async def run_test():
        listener = asyncio.create_task(stream.listen())
        events = []
        async for event in stream:
            events.append(event)
            if isinstance(event, MessageReceived):
                stream.close()
                stream.close()
        await listener
        return events

    events = asyncio.run(run_test())

    assert ids(events) == ["1"]
    assert events[-1] == ConnectionClosed(reason=CloseReason.CLOSED)
    assert len(events) == 2
    assert response.close_calls >= 1
    assert gitter.calls == 1


def test_close_unblocks_pending_read():
    """Test that close from another task wakes a listener waiting for bytes."""
    response = FakeResponse(hold_open=True)
    stream = Stream(URL, FakeGitter([response]), sleep=FakeClock())

    async def closer():
        for _ in range(5):
            await asyncio.sleep(0)
        stream.close()

    async def run_test():
        listener = asyncio.create_task(stream.listen())
        closing = asyncio.create_task(closer())
        events = [event async for event in stream]
        await asyncio.gather(listener, closing)
        return events

    events = asyncio.run(run_test())

    assert events == [ConnectionClosed(reason=CloseReason.CLOSED)]
    assert response.close_calls >= 1


def test_close_from_another_thread_unblocks_pending_read():
    """Test that close from a plain thread wakes the listening loop."""
    response = FakeResponse(lines=[b'{"id":"1"}\n'], hold_open=True)
    stream = Stream(URL, FakeGitter([response]), sleep=FakeClock())
    timers = []

    async def run_test():
        listener = asyncio.create_task(stream.listen())
        events = []
        async for event in stream:
            events.append(event)
            if isinstance(event, MessageReceived):
                timer = threading.Timer(0.05, stream.close)
                timers.append(timer)
                timer.start()
        await listener
        return events

    events = asyncio.run(asyncio.wait_for(run_test(), 5))
    for timer in timers:
        timer.join()

    assert ids(events) == ["1"]
    assert events[-1] == ConnectionClosed(reason=CloseReason.CLOSED)
    assert response.close_calls >= 1
    # Released on the loop's thread, not the timer's.
    assert response.closed_on == threading.get_ident()


def test_listen_twice_raises():
    stream = Stream(URL, FakeGitter(), wait=0, max_retries=1, sleep=FakeClock())

    async def run_test():
        await collect(stream)
        await stream.listen()

    with pytest.raises(StreamError):
        asyncio.run(run_test())


def test_state_while_connected():
    response = FakeResponse(lines=[b'{"id":"1"}\n'], hold_open=True)
    stream = Stream(URL, FakeGitter([response]), sleep=FakeClock())
    states = []

    async def run_test():
        listener = asyncio.create_task(stream.listen())
        async for event in stream:
            states.append(stream.state)
            stream.close()
        await listener

    asyncio.run(run_test())

    assert states[0] == StreamState.CONNECTED
    assert stream.state == StreamState.CLOSED


def test_event_channel_send_waits_for_receiver():
    """Test that send only completes once the consumer has taken the event."""

    async def run_test():
        channel = EventChannel()
        event = ConnectionClosed()
        sender = asyncio.create_task(channel.send(event))
        for _ in range(5):
            await asyncio.sleep(0)
        blocked = not sender.done()
        received = await channel.receive()
        await sender
        return blocked, received

    blocked, received = asyncio.run(run_test())

    assert blocked
    assert received == ConnectionClosed()


def test_event_channel_close_ends_iteration():
    async def run_test():
        channel = EventChannel()
        channel.close()
        channel.close()
        return [event async for event in channel]

    assert asyncio.run(run_test()) == []


def test_event_channel_send_after_close_raises():
    async def run_test():
        channel = EventChannel()
        channel.close()
        await channel.send(ConnectionClosed())

    with pytest.raises(StreamError):
        asyncio.run(run_test())


def test_gitter_stream_url_and_defaults():
    """Test the stream endpoint built for a room."""
    gitter = Gitter("abc", stream_base_url="https://stream.gitter.im/v1")

    stream = gitter.stream("xyz")

    assert stream.url == "https://stream.gitter.im/v1/rooms/xyz/chatMessages"
    assert stream.connection.wait == 3.0
    assert stream.connection.max_retries == 5
    assert stream.state == StreamState.IDLE
