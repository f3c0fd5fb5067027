import asyncio

import pytest

from session.connection import Connection
from session.manager import SessionManager
from session.registry import Membership


def drain(connection: Connection) -> list[dict]:
    """Pop every queued outbound frame of a connection."""
    frames = []
    while True:
        try:
            message = connection.queue.get_nowait()
        except asyncio.QueueEmpty:
            return frames
        if message is not None:
            frames.append(message)


def events(connection: Connection) -> list[str]:
    return [frame["event"] for frame in drain(connection)]


def check_consistency(membership: Membership):
    """Assert that the registry and the room directory describe the same memberships."""
    directory, registry = membership.directory, membership.registry
    seen = set()
    for room_id in directory.room_ids():
        members = directory.members(room_id)
        assert members, f"room {room_id} exists with no members"
        names = [user.username for user in members.values()]
        assert len(names) == len(set(names)), f"duplicate usernames in room {room_id}: {names}"
        for connection_id, user in members.items():
            assert connection_id not in seen, f"connection {connection_id} is in more than one room"
            seen.add(connection_id)
            assert registry.get(connection_id) is user, f"registry disagrees for {connection_id}"
    assert len(seen) == len(registry), "registry has connections missing from the directory"


class RecordingRelay:
    def __init__(self):
        self.published = []

    def publish(self, room_id, event, payload, sender_id, mode):
        self.published.append((room_id, event, payload, sender_id, mode))
        return 0


@pytest.fixture
def relay():
    return RecordingRelay()


@pytest.fixture
def manager(relay):
    session_manager = SessionManager(relay=relay)
    yield session_manager
    session_manager.close()


@pytest.fixture
def connect(manager):
    def _connect(connection_id: str, queue_size: int = 64) -> Connection:
        connection = Connection(connection_id, queue_size=queue_size)
        manager.attach(connection)
        return connection

    return _connect
