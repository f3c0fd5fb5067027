import asyncio
import json
import uuid
from typing import Callable, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_ROOM_CHANNEL, REDIS_ROOM_PATTERN
from logging_config import get_logger

logger = get_logger(__name__)


def connect_redis() -> redis.Redis:
    try:
        client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        # Test connection
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
        raise


class RedisRelay:
    """Cross-instance fan-out of room events over Redis pub/sub.

    Each server instance only knows its own connections. Relayed broadcasts
    are published on the room channel and every other instance hands them to
    its local members of that room. Membership is never relayed.
    """

    def __init__(self, redis_client=None, pubsub_client=None, instance_id: Optional[str] = None):
        self.redis_client = redis_client if redis_client is not None else connect_redis()
        # pubsub() holds its own connection taken from this client's pool
        self.pubsub_client = pubsub_client if pubsub_client is not None else self.redis_client
        self.instance_id = instance_id or uuid.uuid4().hex
        self._task: Optional[asyncio.Task] = None
        logger.info(f"Initializing RedisRelay for instance {self.instance_id}")

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish(self, room_id: str, event: str, payload: dict, sender_id: Optional[str], mode: str):
        """Publish a room event for the other instances."""
        channel = self.get_room_channel_name(room_id)
        message_json = json.dumps({
            "origin": self.instance_id,
            "room_id": room_id,
            "event": event,
            "payload": payload,
            "sender": sender_id,
            "mode": mode,
        })
        subscribers = self.redis_client.publish(channel, message_json)
        logger.debug(f"Published {event} to room {room_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    def decode(self, message: dict) -> Optional[dict]:
        """Turn a raw pub/sub message into a relay envelope, or None if it should be skipped."""
        if message.get("type") not in ("message", "pmessage"):
            return None
        try:
            envelope = json.loads(message["data"])
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error parsing relay message on {message.get('channel')}: {e}")
            return None
        if envelope.get("origin") == self.instance_id:
            return None
        if not envelope.get("room_id") or not envelope.get("event"):
            logger.warning(f"Relay message without room or event dropped: {envelope}")
            return None
        return envelope

    async def listen(self, deliver: Callable[[dict], None], poll_timeout: float = 1.0):
        """Background task: pull relayed events from Redis and hand them to deliver()."""
        logger.info(f"Starting Redis pub/sub listener on {REDIS_ROOM_PATTERN}")
        pubsub = None
        try:
            pubsub = self.pubsub_client.pubsub()
            pubsub.psubscribe(REDIS_ROOM_PATTERN)
            loop = asyncio.get_running_loop()

            def get_message():
                """Blocking call to get next message from Redis pub/sub with timeout."""
                try:
                    return pubsub.get_message(timeout=poll_timeout, ignore_subscribe_messages=True)
                except Exception as e:
                    logger.error(f"Error in pubsub.get_message(): {e}", exc_info=True)
                    return None

            while True:
                # Run blocking get_message() in thread pool with timeout
                message = await loop.run_in_executor(None, get_message)
                if message is None:
                    # Timeout or no message, yield before polling again
                    await asyncio.sleep(0)
                    continue
                envelope = self.decode(message)
                if envelope is None:
                    continue
                try:
                    deliver(envelope)
                except Exception as e:
                    logger.error(f"Error delivering relayed {envelope.get('event')} for room {envelope.get('room_id')}: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Redis listener task cancelled")
            raise
        except Exception as e:
            logger.error(f"Redis listener stopped on error: {e}", exc_info=True)
        finally:
            if pubsub is not None:
                try:
                    pubsub.close()
                    logger.debug("Closed pub/sub connection")
                except Exception as e:
                    logger.error(f"Error closing pub/sub: {e}")

    def start(self, deliver: Callable[[dict], None]):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.listen(deliver))
        return self._task

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Redis listener task failed: {e}", exc_info=True)
            self._task = None
        try:
            self.redis_client.close()
        except Exception as e:
            logger.debug(f"Error closing Redis client: {e}")
