"""
Per-connection speed test session.

A session moves through STARTING -> ACTIVE -> CLOSING -> CLOSED. While it is
active it:

* sends a ping every ``heartbeat_interval`` seconds and drops the client if
  no ping or pong has arrived for longer than ``client_timeout``,
* answers every text or binary message with one binary message holding the
  full payload.

All state is touched from the event loop thread only: the message loop, the
heartbeat task, and the ping/pong callbacks fired by the connection.
"""

import asyncio
import enum
import logging
import time

from statemachine import State, StateMachine
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK
from websockets.frames import CloseCode

from .config import CLIENT_TIMEOUT, HEARTBEAT_INTERVAL
from .payload import PayloadError

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    STARTING = "starting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionLifecycle(StateMachine):
    """
    Lifecycle of one session.

    Transitions:
    - starting -> active: activate (upgrade complete)
    - starting -> closing: begin_close (torn down before it ever started)
    - active -> closing: begin_close (timeout, close frame, error)
    - closing -> closed: finish (connection released)

    Anything else raises ``TransitionNotAllowed``.
    """

    starting = State("Starting", value=SessionState.STARTING, initial=True)
    active = State("Active", value=SessionState.ACTIVE)
    closing = State("Closing", value=SessionState.CLOSING)
    closed = State("Closed", value=SessionState.CLOSED, final=True)

    activate = starting.to(active)
    begin_close = starting.to(closing) | active.to(closing)
    finish = closing.to(closed)

    def __init__(self, remote_address=None):
        # Set before super().__init__(), which enters the initial state.
        self.remote_address = remote_address
        super().__init__()

    def on_enter_state(self, state: State, event=None, **kwargs) -> None:
        logger.debug(f"Session {self.remote_address}: {event} -> {state.id}")


class Session:
    """
    Owns one WebSocket connection for its lifetime.

    ``connection`` needs ``recv()``, ``send()``, ``ping()`` and ``close()``
    coroutines, as provided by ``websockets`` connections. The protocol layer
    answers client pings with pongs and echoes close frames; the session only
    records that a liveness signal arrived.
    """

    def __init__(
        self,
        connection,
        payload_source,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        client_timeout: float = CLIENT_TIMEOUT,
        clock=time.monotonic,
    ):
        self.connection = connection
        self.payload_source = payload_source
        self.heartbeat_interval = heartbeat_interval
        self.client_timeout = client_timeout
        self.clock = clock

        self.lifecycle = SessionLifecycle(self.remote_address)
        self.last_heartbeat = None
        self.payloads_sent = 0
        self.close_code = CloseCode.NORMAL_CLOSURE
        self.close_reason = ""
        self._heartbeat_task = None

    @property
    def remote_address(self):
        return getattr(self.connection, "remote_address", None)

    @property
    def state(self) -> SessionState:
        return self.lifecycle.current_state_value

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    # --- Lifecycle ---

    def start(self):
        """Marks the upgrade as complete and arms the heartbeat."""
        self.lifecycle.activate()
        self.last_heartbeat = self.clock()
        self._heartbeat_task = asyncio.create_task(self._heartbeat())

    def _begin_close(self):
        if self.state in (SessionState.STARTING, SessionState.ACTIVE):
            self.lifecycle.begin_close()

    async def close(self, code=None, reason=None):
        """Cancels the heartbeat and closes the connection. Safe to call twice."""
        if self.state is SessionState.CLOSED:
            return
        self._begin_close()
        if code is not None:
            self.close_code = code
            self.close_reason = reason or ""

        task, self._heartbeat_task = self._heartbeat_task, None
        try:
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Heartbeat failed: {e}", exc_info=True)
            await self.connection.close(self.close_code, self.close_reason)
        finally:
            self.lifecycle.finish()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def run(self):
        """Serves the connection until it closes, times out or fails."""
        async with self:
            try:
                while self.active:
                    message = await self.connection.recv()
                    await self.handle_message(message)
            except ConnectionClosedOK as e:
                logger.info(f"Connection closed by client: {e}")
            except ConnectionClosedError as e:
                if self.state is SessionState.CLOSING:
                    logger.info(f"Connection closed: {e}")
                else:
                    logger.warning(f"Connection lost: {e}")
            except PayloadError as e:
                logger.error(f"Payload unavailable, closing session: {e}")
                self.close_code = CloseCode.INTERNAL_ERROR
                self.close_reason = "payload unavailable"
            except Exception as e:
                logger.error(f"An error occurred: {e}", exc_info=True)
                self.close_code = CloseCode.INTERNAL_ERROR
                self.close_reason = "internal error"

    # --- Inbound frames ---

    def on_ping(self, data: bytes = b""):
        if self.active:
            self.last_heartbeat = self.clock()

    def on_pong(self, data: bytes = b""):
        if self.active:
            self.last_heartbeat = self.clock()

    async def handle_message(self, message):
        """Answers a transfer request with the whole payload in one frame."""
        if not self.active:
            return

        fetch_start = time.perf_counter()
        payload = await asyncio.to_thread(self.payload_source.fetch)
        fetch_end = time.perf_counter()

        await self.connection.send(payload)
        send_end = time.perf_counter()
        self.payloads_sent += 1

        logger.debug(
            f"Payload #{self.payloads_sent} ({len(payload)} bytes) | "
            f"Fetch: {(fetch_end - fetch_start) * 1000:6.2f}ms | "
            f"WS Send: {(send_end - fetch_end) * 1000:6.2f}ms"
        )

    # --- Heartbeat ---

    async def tick(self) -> bool:
        """
        One heartbeat check. Returns False once the session should stop
        ticking.
        """
        if not self.active:
            return False

        elapsed = self.clock() - self.last_heartbeat
        if elapsed > self.client_timeout:
            logger.warning(
                f"Client {self.remote_address} missed heartbeats for {elapsed:.1f}s, disconnecting"
            )
            self.lifecycle.begin_close()
            self.close_code = CloseCode.INTERNAL_ERROR
            self.close_reason = "heartbeat timeout"
            await self.connection.close(self.close_code, self.close_reason)
            return False

        try:
            await self.connection.ping()
        except ConnectionClosed:
            self._begin_close()
            return False
        return True

    async def _heartbeat(self):
        while self.active:
            await asyncio.sleep(self.heartbeat_interval)
            if not await self.tick():
                return
