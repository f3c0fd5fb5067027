from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from constants import MAX_ROOM_ID_LENGTH, MAX_USERNAME_LENGTH
from logging_config import get_logger
from schemas.messages import User
from session.broadcast import BroadcastRouter, DeliveryMode
from session.connection import Connection
from session.errors import ConflictError, ValidationError
from session.registry import Membership

logger = get_logger(__name__)


@dataclass
class JoinResult:
    user: User
    users: List[User]

    def to_wire(self) -> dict:
        return {"user": self.user.to_wire(), "users": [u.to_wire() for u in self.users]}


class SessionManager:
    """Owns room membership and is the only writer of it.

    Every method is synchronous and never awaits, so on a single event loop
    each call runs to completion before the next inbound event is handled.
    Outbound frames are only queued here; the per-connection writers send
    them afterwards.
    """

    def __init__(self, relay=None, max_room_id_length: int = MAX_ROOM_ID_LENGTH,
                 max_username_length: int = MAX_USERNAME_LENGTH):
        self.membership = Membership()
        self.connections: Dict[str, Connection] = {}
        self.router = BroadcastRouter(self.membership.directory, self.connections, relay=relay)
        self.max_room_id_length = max_room_id_length
        self.max_username_length = max_username_length

    @property
    def registry(self):
        return self.membership.registry

    @property
    def directory(self):
        return self.membership.directory

    # Transport handles

    def attach(self, connection: Connection):
        self.connections[connection.id] = connection
        logger.debug(f"Connection {connection.id} attached ({len(self.connections)} open)")

    def detach(self, connection_id: str) -> Optional[Connection]:
        connection = self.connections.pop(connection_id, None)
        if connection is not None:
            connection.close()
            logger.debug(f"Connection {connection_id} detached ({len(self.connections)} open)")
        return connection

    # Join coordinator

    def _validate(self, room_id: Optional[str], username: Optional[str]):
        room_id = room_id.strip() if isinstance(room_id, str) else ""
        username = username.strip() if isinstance(username, str) else ""
        if not room_id or not username:
            raise ValidationError("Room ID and username are required")
        if len(room_id) > self.max_room_id_length:
            raise ValidationError(f"Room ID must be at most {self.max_room_id_length} characters")
        if len(username) > self.max_username_length:
            raise ValidationError(f"Username must be at most {self.max_username_length} characters")
        return room_id, username

    def request_join(self, connection_id: str, room_id: Optional[str], username: Optional[str]) -> JoinResult:
        """Commit connection_id into room_id as username.

        Raises ValidationError or ConflictError without touching any state. A
        connection that is already in a room leaves it first, so a repeated
        join after a reconnect needs no separate leave.
        """
        room_id, username = self._validate(room_id, username)

        holder = self.directory.find_username(room_id, username)
        if holder is not None and holder.id != connection_id:
            logger.warning(f"Join rejected for {connection_id}: username '{username}' already taken in room {room_id}")
            raise ConflictError(f"Username '{username}' is already taken in this room")

        if connection_id in self.registry:
            logger.info(f"Connection {connection_id} leaving room {self.registry.room_of(connection_id)} before joining {room_id}")
            self.leave(connection_id, reason="rejoin")

        user = User(
            id=connection_id,
            username=username,
            room_id=room_id,
            joined_at=datetime.now(timezone.utc).isoformat(),
        )
        self.membership.bind(user)
        result = JoinResult(user=user, users=self.directory.users(room_id))
        logger.info(f"{username} ({connection_id}) joined room {room_id}, total users: {len(result.users)}")

        self.router.send_to(connection_id, "joined", result.to_wire())
        self.router.broadcast(room_id, "member-added", {"user": user.to_wire()},
                              DeliveryMode.EXCLUDE_SENDER, sender_id=connection_id)
        return result

    # Leave / disconnect handler

    def leave(self, connection_id: str, reason: str = "leave") -> Optional[User]:
        """Remove the connection's membership; a no-op for connections without one."""
        user = self.membership.unbind(connection_id)
        if user is None:
            logger.debug(f"Leave for {connection_id} ({reason}) ignored, not in a room")
            return None
        logger.info(f"{user.username} ({connection_id}) left room {user.room_id} ({reason})")
        if user.room_id in self.directory:
            self.router.broadcast(user.room_id, "member-removed",
                                  {"connectionId": connection_id, "username": user.username},
                                  DeliveryMode.INCLUDE_SENDER)
        return user

    def disconnect(self, connection_id: str, reason: str = "client close") -> Optional[User]:
        logger.info(f"Connection {connection_id} disconnected ({reason})")
        user = self.leave(connection_id, reason=reason)
        self.detach(connection_id)
        return user

    # Introspection

    def room_of(self, connection_id: str) -> Optional[str]:
        return self.registry.room_of(connection_id)

    def user_of(self, connection_id: str) -> Optional[User]:
        return self.registry.get(connection_id)

    def close(self):
        """Drop every membership and transport handle; used on shutdown."""
        for connection_id in list(self.connections):
            self.membership.unbind(connection_id)
            self.detach(connection_id)
        logger.info("Session manager closed")
