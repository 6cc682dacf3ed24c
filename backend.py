import redis
import json
from typing import Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_USER_KEY, REDIS_PORTFOLIO_META_KEY, REDIS_EVENTS_CHANNEL
from logging_config import get_logger
from realtime.auth import Identity

logger = get_logger(__name__)

TRUTHY = ("1", "true", "yes", "t")


class RedisBackend:
    """Redis access for the realtime service.

    Serves identity lookups for the authenticator, portfolio ownership for the room policy,
    and the pub/sub channel out-of-process producers publish events on. Clients connect
    lazily, so constructing the backend never touches the network.
    """

    def __init__(self, host: str = REDIS_HOST, port: int = REDIS_PORT, password: Optional[str] = REDIS_PASSWORD,
                 redis_client=None, pubsub_client=None):
        logger.info(f"Initializing RedisBackend for {host}:{port}")
        self.redis_client = redis_client or redis.Redis(host=host, port=port, password=password, decode_responses=True)
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client or redis.Redis(host=host, port=port, password=password, decode_responses=True)

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def find_identity_by_id(self, user_id: str) -> Optional[Identity]:
        logger.debug(f"Fetching identity for user {user_id}")
        data = self.redis_client.hgetall(REDIS_USER_KEY.format(user_id=user_id))
        if not data:
            logger.debug(f"User {user_id} not found in Redis")
            return None
        return Identity(user_id=str(user_id), email=data.get("email", ""), name=data.get("name", ""))

    def save_identity(self, identity: Identity, ttl: Optional[int] = None):
        key = REDIS_USER_KEY.format(user_id=identity.user_id)
        self.redis_client.hset(key, mapping={"user_id": identity.user_id, "email": identity.email, "name": identity.name})
        if ttl:
            self.redis_client.expire(key, ttl)
        logger.debug(f"Stored identity for user {identity.user_id}")

    def get_portfolio_access(self, portfolio_id: str) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_PORTFOLIO_META_KEY.format(portfolio_id=portfolio_id))
        if not data:
            return None
        return {
            "user_id": data.get("user_id"),
            "is_published": str(data.get("is_published", "")).lower() in TRUTHY,
        }

    def set_portfolio_access(self, portfolio_id: str, user_id: str, is_published: bool):
        key = REDIS_PORTFOLIO_META_KEY.format(portfolio_id=portfolio_id)
        self.redis_client.hset(key, mapping={"user_id": str(user_id), "is_published": str(bool(is_published)).lower()})

    def get_events_channel_name(self) -> str:
        return REDIS_EVENTS_CHANNEL

    def publish_event(self, event_type: str, room_id: str, payload: dict) -> int:
        """Publish a notify call for every realtime instance. Returns the subscriber count."""
        message_json = json.dumps({"event_type": event_type, "room_id": room_id, "payload": payload}, default=str)
        subscribers = self.redis_client.publish(REDIS_EVENTS_CHANNEL, message_json)
        logger.debug(f"Published {event_type} for room {room_id} on {REDIS_EVENTS_CHANNEL}, {subscribers} subscribers")
        return subscribers

    def subscribe_to_events(self):
        """Create a pubsub subscriber for the events channel."""
        logger.debug(f"Subscribing to Redis channel {REDIS_EVENTS_CHANNEL}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.subscribe(REDIS_EVENTS_CHANNEL)
        return pubsub
