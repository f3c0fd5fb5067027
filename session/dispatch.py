import time
from typing import Optional

from logging_config import get_logger
from schemas import messages
from session.broadcast import DeliveryMode
from session.errors import ConflictError, InternalFailure, SessionError
from session.manager import SessionManager

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class MessageDispatcher:
    """Single entry point for inbound frames of one server process.

    Membership changes go through SessionManager.request_join/leave only;
    everything else is a read of membership followed by a broadcast.
    """

    def __init__(self, manager: SessionManager):
        self.manager = manager
        self.router = manager.router
        self._handlers = {
            messages.JoinRequest: self.handle_join,
            messages.LeaveRoom: self.handle_leave,
            messages.CodeChange: self.handle_code_change,
            messages.SendMessage: self.handle_send_message,
            messages.CursorMove: self.handle_cursor_move,
            messages.FileOpen: self.handle_file_open,
            messages.FileContent: self.handle_file_content,
            messages.FileSave: self.handle_file_save,
            messages.DrawingUpdate: self.handle_drawing_update,
            messages.RequestDrawing: self.handle_request_drawing,
            messages.SyncDrawing: self.handle_sync_drawing,
            messages.Ping: self.handle_ping,
            messages.Pong: self.handle_pong,
        }

    def dispatch(self, connection_id: str, message):
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TypeError(f"No handler for {type(message).__name__}")
        handler(connection_id, message)

    def reject(self, connection_id: str, code: str, message: str):
        self.router.send_to(connection_id, "error", {"code": code, "message": message})

    # Membership

    def handle_join(self, connection_id: str, message: messages.JoinRequest):
        logger.info(f"Join request from {connection_id}: {message.username} to {message.room_id}")
        ack = {"ref": message.ref}
        try:
            result = self.manager.request_join(connection_id, message.room_id, message.username)
        except ConflictError as e:
            self.router.send_to(connection_id, "username-exists", {"error": str(e)})
            self.router.send_to(connection_id, "join-ack", {**ack, "success": False, "error": str(e), "code": e.code})
            return
        except SessionError as e:
            logger.warning(f"Join request from {connection_id} rejected: {e}")
            self.router.send_to(connection_id, "join-ack", {**ack, "success": False, "error": str(e), "code": e.code})
            return
        except Exception as e:
            logger.error(f"Error joining room for {connection_id}: {e}", exc_info=True)
            failure = InternalFailure("Failed to join room")
            self.router.send_to(connection_id, "join-ack", {**ack, "success": False, "error": str(failure), "code": failure.code})
            return
        self.router.send_to(connection_id, "join-ack", {**ack, "success": True, **result.to_wire()})

    def handle_leave(self, connection_id: str, message: messages.LeaveRoom):
        current = self.manager.room_of(connection_id)
        if current is not None and current != message.room_id:
            logger.warning(f"Leave request from {connection_id} for room {message.room_id} ignored, member of {current}")
            return
        self.manager.leave(connection_id, reason="leave")

    # Pass-through events

    def _sender(self, connection_id: str, room_id: str):
        """Return the sender's committed User if it is a member of room_id, else reject."""
        user = self.manager.user_of(connection_id)
        if user is None or user.room_id != room_id:
            logger.warning(f"Connection {connection_id} sent to room {room_id} without being a member")
            self.reject(connection_id, "not-in-room", f"Not a member of room {room_id}")
            return None
        return user

    def _relay(self, connection_id: str, room_id: str, event: str, payload: dict,
               mode: DeliveryMode = DeliveryMode.EXCLUDE_SENDER):
        if self._sender(connection_id, room_id) is None:
            return
        self.router.broadcast(room_id, event, payload, mode, sender_id=connection_id, relay=True)

    def handle_code_change(self, connection_id: str, message: messages.CodeChange):
        self._relay(connection_id, message.room_id, "code-update", {
            "code": message.code,
            "cursorPos": message.cursor_pos,
            "filePath": message.file_path,
            "sender": connection_id,
            "timestamp": now_ms(),
        })

    def handle_send_message(self, connection_id: str, message: messages.SendMessage):
        user = self._sender(connection_id, message.room_id)
        if user is None:
            return
        logger.debug(f"[{message.room_id}] {user.username}: {len(message.text)} chars")
        self.router.broadcast(message.room_id, "receive-message", {
            "username": user.username,
            "text": message.text,
            "sender": connection_id,
            "timestamp": now_ms(),
        }, DeliveryMode.INCLUDE_SENDER, sender_id=connection_id, relay=True)

    def handle_cursor_move(self, connection_id: str, message: messages.CursorMove):
        user = self._sender(connection_id, message.room_id)
        if user is None:
            return
        self.router.broadcast(message.room_id, "cursor-move", {
            "username": user.username,
            "x": message.x,
            "y": message.y,
            "sender": connection_id,
            "timestamp": now_ms(),
        }, DeliveryMode.EXCLUDE_SENDER, sender_id=connection_id, relay=True)

    def handle_file_open(self, connection_id: str, message: messages.FileOpen):
        user = self._sender(connection_id, message.room_id)
        if user is None:
            return
        logger.info(f"[{message.room_id}] {user.username} opened file: {message.file_path}")
        self.router.broadcast(message.room_id, "file-opened", {
            "filePath": message.file_path,
            "openedBy": user.username,
            "timestamp": now_ms(),
        }, DeliveryMode.EXCLUDE_SENDER, sender_id=connection_id, relay=True)

    def handle_file_content(self, connection_id: str, message: messages.FileContent):
        user = self._sender(connection_id, message.room_id)
        if user is None:
            return
        self.router.broadcast(message.room_id, "file-update", {
            "filePath": message.file_path,
            "code": message.code,
            "updatedBy": user.username,
            "timestamp": now_ms(),
        }, DeliveryMode.EXCLUDE_SENDER, sender_id=connection_id, relay=True)

    def handle_file_save(self, connection_id: str, message: messages.FileSave):
        user = self._sender(connection_id, message.room_id)
        if user is None:
            return
        logger.info(f"[{message.room_id}] {user.username} saved file: {message.file_path}")
        self.router.broadcast(message.room_id, "file-saved", {
            "filePath": message.file_path,
            "savedBy": user.username,
            "timestamp": now_ms(),
        }, DeliveryMode.INCLUDE_SENDER, sender_id=connection_id, relay=True)

    def handle_drawing_update(self, connection_id: str, message: messages.DrawingUpdate):
        self._relay(connection_id, message.room_id, "drawing-update", {
            "drawingData": message.drawing_data,
            "sender": connection_id,
            "timestamp": now_ms(),
        })

    def handle_request_drawing(self, connection_id: str, message: messages.RequestDrawing):
        self._relay(connection_id, message.room_id, "request-drawing", {"connectionId": connection_id})

    def handle_sync_drawing(self, connection_id: str, message: messages.SyncDrawing):
        if self._sender(connection_id, message.room_id) is None:
            return
        if self.manager.room_of(message.connection_id) != message.room_id:
            logger.debug(f"sync-drawing target {message.connection_id} is not in room {message.room_id}, dropped")
            return
        self.router.send_to(message.connection_id, "sync-drawing", {
            "drawingData": message.drawing_data,
            "sender": connection_id,
        })

    # Liveness

    def handle_ping(self, connection_id: str, message: Optional[messages.Ping] = None):
        self.router.send_to(connection_id, "pong", {"timestamp": now_ms()})

    def handle_pong(self, connection_id: str, message: Optional[messages.Pong] = None):
        pass
