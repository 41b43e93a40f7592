import logging
import redis
from typing import Optional

from .events import Event

logger = logging.getLogger(__name__)

EVENT_LOG_SIZE = 1000


class EventPublisher:
    """
    Announces lobby events over Redis pub/sub.

    The store commit has already happened when an event is published, so
    a Redis outage is logged and never turned into a business failure.
    Without a client every call is a no-op.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str) -> "EventPublisher":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish_tournament_event(self, event: Event) -> bool:
        if not self.enabled:
            return False

        channel = event.channel
        payload = event.to_json()
        try:
            self.redis.publish(channel, payload)
            self.redis.publish("global:announcements", payload)
            self._log_event(event.tournament_id, payload)
        except redis.RedisError as e:
            logger.error(f"Failed to publish {event.type.value} for tournament {event.tournament_id}: {e}")
            return False

        logger.debug(f"Published {event.type.value} on {channel}")
        return True

    def _log_event(self, tournament_id: int, payload: str):
        key = f"tournament:{tournament_id}:event_log"
        self.redis.lpush(key, payload)
        self.redis.ltrim(key, 0, EVENT_LOG_SIZE - 1)
