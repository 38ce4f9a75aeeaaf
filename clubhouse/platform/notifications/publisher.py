"""Publishes member events onto Redis pub/sub.

Events are published after the state change they describe has committed.
Delivery is fire-and-forget: a Redis outage is logged and never undoes or
blocks the membership write.
"""

from typing import Optional

import redis.asyncio as redis

from clubhouse.core.logging import ContextualLogger, logger
from clubhouse.core.redis_client import RedisClient, redis_client
from clubhouse.schemas.member_event import MemberEvent, MemberEventType

CHANNEL_NAMESPACE = "member_events"


def make_channel(event_type: MemberEventType) -> str:
    """Build the channel name ``member_events:<type>``."""
    return f"{CHANNEL_NAMESPACE}:{event_type.value}"


class MemberEventPublisher:
    """Publishes ``MemberEvent`` objects as JSON."""

    def __init__(self, client: Optional[RedisClient] = None):
        """Initialize the publisher with a Redis client wrapper."""
        self.client = client or redis_client

    async def publish(self, event: MemberEvent, log: Optional[ContextualLogger] = None) -> bool:
        """Publish an event.

        Returns:
            bool: Whether the event reached Redis.
        """
        log = (log or logger).with_context(
            event_type=event.type.value, user_id=str(event.user_id)
        )
        try:
            receivers = await self.client.publish(
                make_channel(event.type), event.model_dump_json()
            )
        except (redis.RedisError, OSError) as e:
            log.error(f"Failed to publish member event: {e}")
            return False

        log.info(f"Published {event.type.value} to {receivers} subscriber(s)")
        return True


member_event_publisher = MemberEventPublisher()
