import asyncio
import enum
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from constants import RECONNECT_ATTEMPTS, RECONNECT_DELAY, RECONNECT_DELAY_MAX
from client.transport import TransportClosed, WebSocketTransport, build_ws_url
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ReconnectExhausted(Exception):
    def __init__(self, attempts: int):
        super().__init__(f"Gave up reconnecting after {attempts} failed attempts")
        self.attempts = attempts


@dataclass
class BackoffPolicy:
    initial_delay: float = RECONNECT_DELAY
    max_delay: float = RECONNECT_DELAY_MAX
    max_attempts: int = RECONNECT_ATTEMPTS
    factor: float = 2.0
    # fraction of the delay randomised in either direction
    jitter: float = 0.5

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        delay = min(self.initial_delay * self.factor ** max(attempt - 1, 0), self.max_delay)
        if self.jitter:
            deviation = delay * self.jitter
            delay = delay - deviation + rand() * 2 * deviation
        return max(0.0, min(delay, self.max_delay))


class ReconnectionSupervisor:
    """Keeps a client session alive across transport loss.

    The identity passed to join() is cached; whenever the supervisor
    (re)enters CONNECTED it sends the join-request again, which the server
    treats as an idempotent re-join. After policy.max_attempts consecutive
    failed connection attempts it stops in DISCONNECTED and run() raises
    ReconnectExhausted.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable],
        policy: Optional[BackoffPolicy] = None,
        on_event: Optional[Callable[[str, dict], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self._connect = connect
        self.policy = policy or BackoffPolicy()
        self.on_event = on_event
        self.on_state_change = on_state_change
        self._sleep = sleep
        self._state = ConnectionState.DISCONNECTED
        self._transport = None
        self._identity: Optional[Tuple[str, str]] = None
        self._closing = False
        self.connection_id: Optional[str] = None

    @classmethod
    def for_url(cls, base_url: str, **kwargs) -> "ReconnectionSupervisor":
        url = build_ws_url(base_url)
        return cls(lambda: WebSocketTransport.connect(url), **kwargs)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def identity(self) -> Optional[Tuple[str, str]]:
        return self._identity

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        logger.info(f"Connection state {self._state.value} -> {state.value}")
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    # Application API

    async def join(self, room_id: str, username: str):
        self._identity = (room_id, username)
        if self._state == ConnectionState.CONNECTED:
            await self._send_join()

    async def leave(self):
        identity, self._identity = self._identity, None
        if identity is not None and self._state == ConnectionState.CONNECTED:
            await self.send("leave-room", roomId=identity[0])

    async def send(self, event: str, **payload) -> bool:
        transport = self._transport
        if transport is None or self._state != ConnectionState.CONNECTED:
            logger.debug(f"Not connected, dropping {event}")
            return False
        try:
            await transport.send({"event": event, **payload})
            return True
        except TransportClosed as e:
            logger.warning(f"Send of {event} failed, connection lost: {e}")
            return False

    async def close(self):
        """Stop for good; no reconnection follows."""
        self._closing = True
        transport = self._transport
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.debug(f"Error closing transport: {e}")

    # Supervision loop

    async def _send_join(self):
        room_id, username = self._identity
        logger.info(f"Joining room {room_id} as {username}")
        await self.send("join-request", roomId=room_id, username=username)

    async def _pump(self, transport):
        while True:
            try:
                message = await transport.recv()
            except TransportClosed as e:
                logger.warning(f"Connection lost: {e}")
                return
            event = message.get("event")
            if event == "connected":
                self.connection_id = message.get("connectionId")
            elif event == "ping":
                await self.send("pong")
            if self.on_event is not None:
                try:
                    self.on_event(event, message)
                except Exception as e:
                    logger.error(f"Event handler failed for {event}: {e}", exc_info=True)

    async def run(self):
        self._closing = False
        failures = 0
        self._set_state(ConnectionState.CONNECTING)
        while not self._closing:
            try:
                transport = await self._connect()
            except Exception as e:
                failures += 1
                logger.warning(f"Connection attempt {failures}/{self.policy.max_attempts} failed: {e}")
                if failures >= self.policy.max_attempts:
                    self._set_state(ConnectionState.DISCONNECTED)
                    raise ReconnectExhausted(failures)
                self._set_state(ConnectionState.RECONNECTING)
                await self._sleep(self.policy.delay_for(failures))
                continue

            if self._closing:
                logger.info("Closed while connecting, dropping the new connection")
                await transport.close()
                break

            failures = 0
            self._transport = transport
            self._set_state(ConnectionState.CONNECTED)
            if self._identity is not None:
                await self._send_join()
            await self._pump(transport)
            self._transport = None
            self.connection_id = None
            if self._closing:
                break
            self._set_state(ConnectionState.RECONNECTING)
            await self._sleep(self.policy.delay_for(1))

        self._set_state(ConnectionState.DISCONNECTED)
