import asyncio
import json
from typing import Optional

from logging_config import get_logger

logger = get_logger(__name__)


class RedisEventRelay:
    """Carries notify calls from producers in other processes to this instance's rooms.

    Producers call ``publish``; every realtime instance runs ``listen`` and hands each
    message to its local bridge. One channel and one publisher connection keep the
    messages of a single producer in order.
    """

    def __init__(self, backend, bridge, poll_timeout: float = 1.0):
        self.backend = backend
        self.bridge = bridge
        self.poll_timeout = poll_timeout
        self._task: Optional[asyncio.Task] = None

    def publish(self, event_type: str, room_id: str, payload: dict) -> bool:
        try:
            self.backend.publish_event(event_type, room_id, payload)
            return True
        except Exception as e:
            logger.error(f"Error publishing {event_type} for room {room_id} to Redis: {e}", exc_info=True)
            return False

    def handle_message(self, message: Optional[dict]):
        if not message or message.get("type") != "message":
            return None
        try:
            data = json.loads(message["data"])
            event_type = data["event_type"]
            room_id = data["room_id"]
            payload = data.get("payload") or {}
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Error parsing relayed event: {e}")
            return None
        logger.debug(f"Relayed {event_type} for room {room_id}")
        return self.bridge.notify(event_type, room_id, payload)

    async def listen(self):
        """Background task: read the events channel and dispatch locally until cancelled."""
        channel = self.backend.get_events_channel_name()
        logger.info(f"Starting Redis relay listener on {channel}")
        pubsub = None
        loop = asyncio.get_running_loop()
        try:
            pubsub = self.backend.subscribe_to_events()

            def get_message():
                """Blocking call to get next message from Redis pub/sub with timeout."""
                try:
                    return pubsub.get_message(timeout=self.poll_timeout, ignore_subscribe_messages=True)
                except Exception as e:
                    logger.error(f"Error in pubsub.get_message() on {channel}: {e}", exc_info=True)
                    return None

            while True:
                message = await loop.run_in_executor(None, get_message)
                if message is None:
                    # Timeout or no message, continue loop
                    continue
                self.handle_message(message)
        except asyncio.CancelledError:
            logger.info(f"Redis relay listener on {channel} cancelled")
            raise
        finally:
            if pubsub:
                try:
                    pubsub.close()
                except Exception as e:
                    logger.error(f"Error closing pub/sub for {channel}: {e}")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.listen())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
