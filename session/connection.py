import asyncio
import json
from typing import Awaitable, Callable, Optional

from logging_config import get_logger
from session.errors import TransportError

logger = get_logger(__name__)


class Connection:
    """One transport session, from handshake to close.

    Outbound frames go through a bounded FIFO queue drained by a single writer
    task, so enqueueing never blocks and frames reach the socket in the order
    they were queued.
    """

    def __init__(self, connection_id: str, queue_size: int = 256):
        self.id = connection_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False

    def send(self, event: str, payload: Optional[dict] = None):
        if self.closed:
            raise TransportError(self.id, "connection is closed")
        message = {"event": event, **(payload or {})}
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            raise TransportError(self.id, f"outbound queue full, dropped {event}")

    async def run_writer(self, send_text: Callable[[str], Awaitable[None]]):
        """Drain the outbound queue into the socket until closed or a send fails."""
        while True:
            message = await self.queue.get()
            if message is None:
                break
            try:
                await send_text(json.dumps(message))
            except Exception as e:
                logger.warning(f"Send to connection {self.id} failed, stopping writer: {e}")
                self.closed = True
                break

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # writer is cancelled by the owner in that case
            pass
