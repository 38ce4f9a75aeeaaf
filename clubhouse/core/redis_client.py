"""Redis client configuration."""

import platform
import socket
from typing import Optional

import redis.asyncio as redis

from clubhouse.core.config import settings
from clubhouse.core.logging import logger


class RedisClient:
    """Redis client wrapper with connection pooling."""

    def __init__(self):
        """Initialize Redis clients with separate pools."""
        self._client: Optional[redis.Redis] = None
        self._pubsub_client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        """Get or create the main Redis client."""
        if self._client is None:
            self._client = self._create_client(max_connections=20)
        return self._client

    @property
    def pubsub_client(self) -> redis.Redis:
        """Get or create the Redis client used by long-lived subscriptions."""
        if self._pubsub_client is None:
            self._pubsub_client = self._create_client(max_connections=5, socket_timeout=None)
        return self._pubsub_client

    def _get_socket_keepalive_options(self) -> dict:
        """Get socket keepalive options based on the OS.

        Returns empty dict for macOS to avoid socket option errors.
        """
        if platform.system() == "Darwin":
            return {}
        if hasattr(socket, "TCP_KEEPIDLE"):
            return {
                socket.TCP_KEEPIDLE: 60,  # Start keepalive after 60s idle
                socket.TCP_KEEPINTVL: 10,
                socket.TCP_KEEPCNT: 6,
            }
        return {}

    def _create_client(
        self, max_connections: int = 20, socket_timeout: Optional[float] = 5
    ) -> redis.Redis:
        """Create a Redis client with specified connection pool size."""
        pool = redis.ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
            decode_responses=True,
            max_connections=max_connections,
            retry_on_timeout=True,
            socket_keepalive=True,
            socket_keepalive_options=self._get_socket_keepalive_options(),
            socket_connect_timeout=5,
            socket_timeout=socket_timeout,
        )

        return redis.Redis(connection_pool=pool)

    async def publish(self, channel: str, message: str) -> int:
        """Publish a message to a channel.

        Args:
            channel: The channel to publish to
            message: The message to publish

        Returns:
            The number of subscribers that received the message
        """
        return await self.client.publish(channel, message)

    async def close(self) -> None:
        """Close Redis connection gracefully."""
        if self._client:
            await self._client.aclose()
        if self._pubsub_client:
            await self._pubsub_client.aclose()


# Create a global instance
redis_client = RedisClient()
