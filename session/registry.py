from typing import Dict, List, Optional

from schemas.messages import User
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """connection id -> committed User (room and username)."""

    def __init__(self):
        self._users: Dict[str, User] = {}

    def get(self, connection_id: str) -> Optional[User]:
        return self._users.get(connection_id)

    def room_of(self, connection_id: str) -> Optional[str]:
        user = self._users.get(connection_id)
        return user.room_id if user else None

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._users

    def __len__(self) -> int:
        return len(self._users)


class RoomDirectory:
    """room id -> {connection id -> User}. A room is only present while it has members."""

    def __init__(self):
        self._rooms: Dict[str, Dict[str, User]] = {}

    def members(self, room_id: str) -> Dict[str, User]:
        return dict(self._rooms.get(room_id, {}))

    def member_ids(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, {}))

    def users(self, room_id: str) -> List[User]:
        return list(self._rooms.get(room_id, {}).values())

    def find_username(self, room_id: str, username: str) -> Optional[User]:
        for user in self._rooms.get(room_id, {}).values():
            if user.username == username:
                return user
        return None

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)


class Membership:
    """The registry and directory pair.

    bind() and unbind() are the only writers of either structure and always
    update both, so the two views never disagree.
    """

    def __init__(self):
        self.registry = ConnectionRegistry()
        self.directory = RoomDirectory()

    def bind(self, user: User):
        if user.id in self.registry:
            raise RuntimeError(f"Connection {user.id} is already bound to room {self.registry.room_of(user.id)}")
        room = self.directory._rooms.setdefault(user.room_id, {})
        if len(room) == 0:
            logger.info(f"Room {user.room_id} created")
        room[user.id] = user
        self.registry._users[user.id] = user

    def unbind(self, connection_id: str) -> Optional[User]:
        """Remove the connection's membership; returns the removed User or None if it had none."""
        user = self.registry._users.pop(connection_id, None)
        if user is None:
            return None
        room = self.directory._rooms.get(user.room_id)
        if room is not None:
            room.pop(connection_id, None)
            if len(room) == 0:
                del self.directory._rooms[user.room_id]
                logger.info(f"Room {user.room_id} is now empty, removed")
        return user
