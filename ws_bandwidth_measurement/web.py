from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings

STATIC_DIR = Path(__file__).parent / "static"


def create_app(settings: Settings, payload_size: Optional[int] = None) -> FastAPI:
    """
    Static site for the speed test: the landing page, its script, and the
    settings the script needs to reach the WebSocket endpoint.
    """
    app = FastAPI(title="WebSocket Speed Test")
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    if payload_size is None:
        payload_size = settings.payload_size

    @app.get("/")
    async def index():
        return FileResponse(STATIC_DIR / "index.html")

    @app.get("/config")
    async def read_config():
        return {
            "ws_port": settings.ws_port,
            "ws_path": settings.ws_path,
            "payload_size": payload_size,
            "heartbeat_interval": settings.heartbeat_interval,
        }

    # Basic health check
    @app.get("/health")
    async def health():
        return {"message": "Speed test server is running"}

    return app
