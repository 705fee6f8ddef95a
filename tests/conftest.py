"""Shared pytest fixtures for the speed test server tests."""

import asyncio

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close, CloseCode

from ws_bandwidth_measurement.payload import GeneratedPayloadSource

PAYLOAD_SIZE = 64 * 1024


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TransportFailure:
    """Queued in a FakeConnection to make recv() fail like a reset socket."""


class FakeConnection:
    """
    In-memory stand-in for a websockets server connection.

    Tests queue inbound messages with ``feed()``. A client close is queued
    with ``feed_close()`` and is acknowledged the way the websockets protocol
    layer does it.
    """

    remote_address = ("127.0.0.1", 50000)

    def __init__(self):
        self.inbox = asyncio.Queue()
        self.sent = []
        self.pings = 0
        self.close_acks = []
        self.close_calls = []
        self.closed = asyncio.Event()
        self._close_frame = None
        self.ping_error = None

    def feed(self, message):
        self.inbox.put_nowait(message)

    def feed_close(self, code=CloseCode.NORMAL_CLOSURE, reason=""):
        self.inbox.put_nowait(Close(code, reason))

    def feed_failure(self):
        self.inbox.put_nowait(TransportFailure())

    def _raise_closed(self):
        frame = self._close_frame
        if frame is not None and frame.code in (CloseCode.NORMAL_CLOSURE, CloseCode.GOING_AWAY):
            raise ConnectionClosedOK(frame, frame)
        raise ConnectionClosedError(None, frame)

    async def recv(self):
        if self.closed.is_set():
            self._raise_closed()

        get = asyncio.ensure_future(self.inbox.get())
        closed = asyncio.ensure_future(self.closed.wait())
        done, pending = await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

        if get not in done:
            self._raise_closed()

        item = get.result()
        if isinstance(item, Close):
            self.close_acks.append(item)
            self._close_frame = item
            self.closed.set()
            raise ConnectionClosedOK(item, item, True)
        if isinstance(item, TransportFailure):
            self.closed.set()
            raise ConnectionClosedError(None, None)
        return item

    async def send(self, message):
        if self.closed.is_set():
            self._raise_closed()
        self.sent.append(message)

    async def ping(self, data=None):
        if self.closed.is_set():
            self._raise_closed()
        if self.ping_error is not None:
            raise self.ping_error
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        return waiter

    async def close(self, code=CloseCode.NORMAL_CLOSURE, reason=""):
        self.close_calls.append((int(code), reason))
        if self._close_frame is None:
            self._close_frame = Close(code, reason)
        self.closed.set()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def payload_source():
    return GeneratedPayloadSource(PAYLOAD_SIZE, seed=7)


@pytest.fixture
def make_connection():
    return FakeConnection
