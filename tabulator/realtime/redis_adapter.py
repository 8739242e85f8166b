"""
Redis Broadcast Adapter (multi-worker)

Redis Pub/Sub implementation so that a write on one worker reaches the
WebSocket clients and live views of every other worker.
"""
import logging
from typing import Dict, Any, Optional

import redis.asyncio as aioredis

from .broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)


class RedisAdapter(BroadcastAdapter):
    """
    Redis Pub/Sub adapter.

    Guarantees:
    - Deterministic JSON serialization (sort_keys=True)
    - Cross-worker message delivery
    - No Redis as source of truth (delivery only)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0"):
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._redis = aioredis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True
        )
        await self._redis.ping()
        logger.info("✓ Redis broadcast adapter connected")

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        if not self._redis:
            await self.connect()

        serialized = self.encode(message)

        await self._redis.publish(channel, serialized)

    async def subscribe(self, channel: str):
        """
        Subscribe to Redis channel and yield messages.

        Each subscription owns its PubSub connection so that unsubscribing
        one channel never affects another.
        """
        if not self._redis:
            await self.connect()

        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                decoded = self.decode(message["data"], channel)
                if decoded is not None:
                    yield decoded
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def close(self) -> None:
        """Close Redis connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


async def create_broadcast_adapter(
    use_redis: bool = False,
    redis_url: str = "redis://localhost:6379/0"
) -> BroadcastAdapter:
    """
    Factory function to create appropriate broadcast adapter.

    Args:
        use_redis: True for RedisAdapter, False for InMemoryAdapter
        redis_url: Redis connection URL
    Returns:
        Configured BroadcastAdapter instance
    """
    if use_redis:
        adapter = RedisAdapter(redis_url)
        await adapter.connect()
        return adapter
    else:
        from .in_memory_adapter import InMemoryAdapter
        return InMemoryAdapter()
