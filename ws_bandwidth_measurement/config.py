from dataclasses import dataclass
from typing import Optional

# --- Configuration ---
HOST = "0.0.0.0"
WS_PORT = 8765
HTTP_PORT = 8080
WS_PATH = "/ws"

PAYLOAD_SIZE = 10 * 1024 * 1024  # 10 MiB
PAYLOAD_SEED = 0

HEARTBEAT_INTERVAL = 5.0  # seconds between server pings
CLIENT_TIMEOUT = 10.0  # seconds without ping/pong before the session is dropped
CLOSE_TIMEOUT = 1.0  # seconds to wait for the peer during the close handshake


@dataclass(frozen=True)
class Settings:
    """
    Server settings. Every field has a default so tests can override only
    what they care about.
    """

    host: str = HOST
    ws_port: int = WS_PORT
    http_port: int = HTTP_PORT
    ws_path: str = WS_PATH
    payload_file: Optional[str] = None
    payload_size: int = PAYLOAD_SIZE
    payload_seed: int = PAYLOAD_SEED
    cache_payload: bool = True
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    client_timeout: float = CLIENT_TIMEOUT
    close_timeout: float = CLOSE_TIMEOUT

    def __post_init__(self):
        if self.payload_size <= 0:
            raise ValueError(f"payload_size must be positive, got {self.payload_size}")
        if self.heartbeat_interval <= 0:
            raise ValueError(
                f"heartbeat_interval must be positive, got {self.heartbeat_interval}"
            )
        if self.client_timeout <= self.heartbeat_interval:
            raise ValueError(
                "client_timeout must be longer than heartbeat_interval "
                f"({self.client_timeout} <= {self.heartbeat_interval})"
            )
        if self.close_timeout < 0:
            raise ValueError(f"close_timeout must not be negative, got {self.close_timeout}")
        if not self.ws_path.startswith("/"):
            raise ValueError(f"ws_path must start with '/', got {self.ws_path!r}")
