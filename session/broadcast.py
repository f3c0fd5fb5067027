import enum
from typing import Dict, Optional

from logging_config import get_logger
from session.connection import Connection
from session.errors import TransportError
from session.registry import RoomDirectory

logger = get_logger(__name__)


class DeliveryMode(str, enum.Enum):
    EXCLUDE_SENDER = "exclude_sender"
    INCLUDE_SENDER = "include_sender"


class BroadcastRouter:
    """Fans events out to the members a room has at call time.

    Delivery is at-most-once and best-effort: there is no buffering for
    members that join later and no replay. A failure to reach one member is
    logged and the remaining members are still served.
    """

    def __init__(self, directory: RoomDirectory, connections: Dict[str, Connection], relay=None):
        self.directory = directory
        self.connections = connections
        self.relay = relay

    def send_to(self, connection_id: str, event: str, payload: Optional[dict] = None) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {event} for unknown connection {connection_id}")
            return False
        try:
            connection.send(event, payload)
            return True
        except TransportError as e:
            logger.warning(f"Delivery of {event} failed: {e}")
            return False

    def broadcast(
        self,
        room_id: str,
        event: str,
        payload: dict,
        mode: DeliveryMode = DeliveryMode.EXCLUDE_SENDER,
        sender_id: Optional[str] = None,
        relay: bool = False,
    ) -> int:
        """Deliver to the room's current members; returns how many were reached locally."""
        delivered = self.deliver_local(room_id, event, payload, mode, sender_id)
        if relay and self.relay is not None:
            try:
                self.relay.publish(room_id, event, payload, sender_id, mode.value)
            except Exception as e:
                logger.error(f"Relay publish of {event} for room {room_id} failed: {e}", exc_info=True)
        return delivered

    def deliver_relayed(self, envelope: dict) -> int:
        """Deliver an event another instance published for one of our rooms."""
        try:
            mode = DeliveryMode(envelope.get("mode", DeliveryMode.EXCLUDE_SENDER.value))
        except ValueError:
            mode = DeliveryMode.EXCLUDE_SENDER
        return self.deliver_local(envelope["room_id"], envelope["event"], envelope.get("payload") or {},
                                  mode, envelope.get("sender"))

    def deliver_local(
        self,
        room_id: str,
        event: str,
        payload: dict,
        mode: DeliveryMode = DeliveryMode.EXCLUDE_SENDER,
        sender_id: Optional[str] = None,
    ) -> int:
        member_ids = self.directory.member_ids(room_id)
        delivered = 0
        for connection_id in member_ids:
            if mode == DeliveryMode.EXCLUDE_SENDER and connection_id == sender_id:
                continue
            if self.send_to(connection_id, event, payload):
                delivered += 1
        logger.debug(f"Broadcast {event} in room {room_id}: {delivered}/{len(member_ids)} members")
        return delivered
