import asyncio
import logging
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

import uvicorn
from websockets.asyncio.server import ServerConnection, serve
from websockets.frames import Frame, Opcode

from .config import Settings
from .payload import PayloadSource, build_payload_source
from .session import Session
from .web import create_app

logger = logging.getLogger(__name__)


class SpeedTestConnection(ServerConnection):
    """
    Server connection that reports incoming ping and pong frames to the
    session attached to it. websockets answers pings on its own; this hook
    only lets the session see them.
    """

    session: Optional[Session] = None

    # process_event() is an internal hook of websockets.asyncio.connection;
    # checked against websockets 14.x and 15.x (pinned <16 in pyproject.toml).

    def process_event(self, event):
        super().process_event(event)
        if self.session is None or not isinstance(event, Frame):
            return
        if event.opcode is Opcode.PING:
            self.session.on_ping(bytes(event.data))
        elif event.opcode is Opcode.PONG:
            self.session.on_pong(bytes(event.data))


def make_handler(payload_source: PayloadSource, settings: Settings):
    """Builds the connection handler: one new Session per client."""

    async def handle_connection(connection):
        logger.info(f"Client connected from {connection.remote_address}")
        session = Session(
            connection,
            payload_source,
            heartbeat_interval=settings.heartbeat_interval,
            client_timeout=settings.client_timeout,
        )
        connection.session = session
        try:
            await session.run()
        finally:
            connection.session = None
            logger.info(
                f"Client {connection.remote_address} disconnected "
                f"after {session.payloads_sent} payload(s)."
            )

    return handle_connection


def make_process_request(ws_path: str):
    """Rejects upgrade requests for any path other than ``ws_path``."""

    def process_request(connection, request):
        if urlsplit(request.path).path != ws_path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    return process_request


def serve_websocket(settings: Settings, payload_source: PayloadSource):
    """
    Returns the websockets server for the speed test endpoint, to be used as
    ``async with serve_websocket(...) as server``.
    """
    return serve(
        make_handler(payload_source, settings),
        settings.host,
        settings.ws_port,
        create_connection=SpeedTestConnection,
        process_request=make_process_request(settings.ws_path),
        # Sessions run their own heartbeat.
        ping_interval=None,
        close_timeout=settings.close_timeout,
    )


async def run_servers(settings: Settings, payload_source: Optional[PayloadSource] = None):
    """Runs the WebSocket endpoint and the static site until shutdown."""
    source = payload_source or build_payload_source(settings)
    # Fail at startup rather than on the first request.
    await asyncio.to_thread(source.fetch)

    app = create_app(settings, payload_size=source.size)
    http_server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.http_port, log_config=None)
    )

    logger.info(
        f"Starting WebSocket server on ws://{settings.host}:{settings.ws_port}{settings.ws_path}"
    )
    async with serve_websocket(settings, source):
        logger.info(f"Serving landing page on http://{settings.host}:{settings.http_port}")
        await http_server.serve()
