from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import RedisRelay
from schemas.messages import parse_inbound
from session.connection import Connection
from session.dispatch import MessageDispatcher, now_ms
from session.liveness import LivenessMonitor
from session.manager import SessionManager
from constants import LOG_LEVEL, LOG_FILE, PING_INTERVAL_SECONDS, PING_TIMEOUT_SECONDS, RELAY_ENABLED, SEND_QUEUE_SIZE
from logging_config import get_logger, setup_logging
from typing import Dict, Optional
import asyncio
import pydantic
import uuid

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(
    relay: Optional[RedisRelay] = None,
    relay_enabled: bool = RELAY_ENABLED,
    ping_interval: float = PING_INTERVAL_SECONDS,
    ping_timeout: float = PING_TIMEOUT_SECONDS,
    send_queue_size: int = SEND_QUEUE_SIZE,
) -> FastAPI:
    """Build the application; session state lives for the duration of the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session_relay = relay
        if session_relay is None and relay_enabled:
            session_relay = RedisRelay()
        manager = SessionManager(relay=session_relay)
        transports: Dict[str, WebSocket] = {}

        def probe(connection_id: str):
            manager.router.send_to(connection_id, "ping", {"timestamp": now_ms()})

        def declare_dead(connection_id: str):
            websocket = transports.pop(connection_id, None)
            manager.disconnect(connection_id, reason="ping timeout")
            if websocket is not None:
                asyncio.create_task(close_quietly(websocket, code=1001, reason="ping timeout"))

        monitor = LivenessMonitor(ping_interval, ping_timeout, on_probe=probe, on_dead=declare_dead)

        app.state.manager = manager
        app.state.dispatcher = MessageDispatcher(manager)
        app.state.monitor = monitor
        app.state.transports = transports
        app.state.send_queue_size = send_queue_size

        monitor.start()
        if session_relay is not None:
            session_relay.start(manager.router.deliver_relayed)
        logger.info("Session server started")
        try:
            yield
        finally:
            await monitor.stop()
            if session_relay is not None:
                await session_relay.stop()
            manager.close()
            logger.info("Session server stopped")

    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins
        allow_credentials=True,
        allow_methods=["*"],  # Allow all HTTP methods
        allow_headers=["*"],  # Allow all headers
    )

    app.include_router(rooms_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


async def close_quietly(websocket: WebSocket, code: int = 1000, reason: Optional[str] = None):
    try:
        await websocket.close(code=code, reason=reason)
    except Exception as e:
        logger.debug(f"Error closing WebSocket: {e}")


async def websocket_endpoint(websocket: WebSocket):
    """One session per WebSocket: every text frame is a JSON object tagged by `event`."""
    state = websocket.app.state
    manager: SessionManager = state.manager
    dispatcher: MessageDispatcher = state.dispatcher
    monitor: LivenessMonitor = state.monitor

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    connection = Connection(connection_id, queue_size=state.send_queue_size)
    manager.attach(connection)
    state.transports[connection_id] = websocket
    monitor.track(connection_id)
    writer = asyncio.create_task(connection.run_writer(websocket.send_text))
    logger.info(f"WebSocket connection accepted: {connection_id}")

    manager.router.send_to(connection_id, "connected", {"connectionId": connection_id})

    reason = "client close"
    message_count = 0
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for connection {connection_id} (code {frame.get('code')})")
                break
            monitor.touch(connection_id)
            message_count += 1

            data = frame.get("text")
            if data is None:
                dispatcher.reject(connection_id, "invalid-message", "Binary frames are not supported")
                continue

            # Reject malformed payloads at the boundary
            try:
                message = parse_inbound(data)
            except pydantic.ValidationError as e:
                logger.warning(f"Invalid message #{message_count} from connection {connection_id}: {e.errors()[:1]}")
                dispatcher.reject(connection_id, "invalid-message", "Malformed or unknown message")
                continue

            logger.debug(f"Received {message.event} (#{message_count}) from connection {connection_id}")
            dispatcher.dispatch(connection_id, message)
    except Exception as e:
        reason = "transport error"
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        # Cleanup on disconnect
        monitor.forget(connection_id)
        state.transports.pop(connection_id, None)
        manager.disconnect(connection_id, reason=reason)
        try:
            await asyncio.wait_for(writer, timeout=1.0)
        except asyncio.TimeoutError:
            logger.debug(f"Writer for connection {connection_id} did not drain in time")
        except asyncio.CancelledError:
            pass
        await close_quietly(websocket)


app = create_app()
