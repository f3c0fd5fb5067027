import json
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed

from logging_config import get_logger

logger = get_logger(__name__)


class TransportClosed(Exception):
    """The underlying connection is gone; the supervisor decides whether to retry."""


def build_ws_url(base: str, path: str = "/ws") -> str:
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    elif not base.startswith(("ws://", "wss://")):
        base = "ws://" + base
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base.rstrip('/')}{path}"


def _dumps(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class WebSocketTransport:
    """JSON frames over a `websockets` client connection."""

    def __init__(self, websocket, url: Optional[str] = None):
        self.websocket = websocket
        self.url = url

    @classmethod
    async def connect(cls, url: str, open_timeout: float = 20.0) -> "WebSocketTransport":
        logger.debug(f"Connecting to {url}")
        websocket = await websockets.connect(url, open_timeout=open_timeout)
        return cls(websocket, url)

    async def send(self, message: dict):
        try:
            await self.websocket.send(_dumps(message))
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> dict:
        while True:
            try:
                raw = await self.websocket.recv()
            except ConnectionClosed as e:
                raise TransportClosed(str(e)) from e
            try:
                message = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Ignoring non-JSON frame from {self.url}")
                continue
            if isinstance(message, dict):
                return message
            logger.warning(f"Ignoring non-object frame from {self.url}")

    async def close(self):
        await self.websocket.close()
