import asyncio
import time
from typing import Callable, Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class LivenessMonitor:
    """Heartbeat bookkeeping for open connections.

    A connection silent for ping_interval gets a probe; one silent for
    timeout is reported dead through on_dead, which is expected to close the
    transport and run the regular disconnect path.
    """

    def __init__(
        self,
        ping_interval: float,
        timeout: float,
        on_probe: Callable[[str], None],
        on_dead: Callable[[str], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        if ping_interval <= 0:
            raise ValueError("ping_interval must be positive")
        if timeout <= ping_interval:
            raise ValueError(f"timeout ({timeout}s) must be greater than ping_interval ({ping_interval}s)")
        self.ping_interval = ping_interval
        self.timeout = timeout
        self.on_probe = on_probe
        self.on_dead = on_dead
        self.clock = clock
        self._last_seen: Dict[str, float] = {}
        self._probed: Dict[str, float] = {}
        self._task: Optional[asyncio.Task] = None

    def track(self, connection_id: str):
        self._last_seen[connection_id] = self.clock()

    def touch(self, connection_id: str):
        if connection_id in self._last_seen:
            self._last_seen[connection_id] = self.clock()
            self._probed.pop(connection_id, None)

    def forget(self, connection_id: str):
        self._last_seen.pop(connection_id, None)
        self._probed.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._last_seen)

    def sweep(self) -> List[str]:
        """Probe idle connections and report dead ones; returns the dead ids."""
        now = self.clock()
        dead = []
        for connection_id, last_seen in list(self._last_seen.items()):
            idle = now - last_seen
            if idle >= self.timeout:
                dead.append(connection_id)
            elif idle >= self.ping_interval and now - self._probed.get(connection_id, last_seen) >= self.ping_interval:
                self._probed[connection_id] = now
                self.on_probe(connection_id)

        for connection_id in dead:
            logger.info(f"Connection {connection_id} timed out after {self.timeout}s without activity")
            self.forget(connection_id)
            try:
                self.on_dead(connection_id)
            except Exception as e:
                logger.error(f"Error cleaning up dead connection {connection_id}: {e}", exc_info=True)
        return dead

    async def run(self):
        logger.info(f"Liveness monitor started (ping every {self.ping_interval}s, timeout {self.timeout}s)")
        try:
            while True:
                await asyncio.sleep(min(self.ping_interval, self.timeout - self.ping_interval))
                self.sweep()
        except asyncio.CancelledError:
            logger.info("Liveness monitor stopped")
            raise

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
