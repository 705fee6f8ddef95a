"""WebSocket download speed test server."""

from .config import Settings
from .payload import (
    FilePayloadSource,
    GeneratedPayloadSource,
    PayloadError,
    PayloadSource,
    build_payload_source,
)
from .session import Session, SessionLifecycle, SessionState

__all__ = [
    "Settings",
    "PayloadSource",
    "PayloadError",
    "FilePayloadSource",
    "GeneratedPayloadSource",
    "build_payload_source",
    "Session",
    "SessionLifecycle",
    "SessionState",
]
