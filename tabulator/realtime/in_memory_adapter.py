"""
In-Memory Broadcast Adapter (single worker)

Local-only broadcast implementation using asyncio.Queue.
No Redis dependency for development and tests.
"""
import asyncio
import logging
from typing import Dict, Any, Set

from .broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)


class InMemoryAdapter(BroadcastAdapter):
    """
    In-memory broadcast adapter.

    Each subscriber gets a bounded queue. A full queue drops the new
    message for that subscriber only.
    """

    def __init__(self, queue_size: int = 100):
        self._channels: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()
        self._queue_size = queue_size

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        serialized = self.encode(message)

        async with self._lock:
            queues = list(self._channels.get(channel, ()))
        for queue in queues:
            try:
                queue.put_nowait(serialized)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full on {channel}; dropping #{message['event_sequence']}")

    async def subscribe(self, channel: str):
        """
        Subscribe to channel and yield messages.

        The queue is registered when iteration starts.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._channels.setdefault(channel, set()).add(queue)

        try:
            while True:
                serialized = await queue.get()
                if serialized is None:
                    # Adapter closed
                    break
                message = self.decode(serialized, channel)
                if message is not None:
                    yield message
        finally:
            async with self._lock:
                if channel in self._channels:
                    self._channels[channel].discard(queue)
                    if not self._channels[channel]:
                        del self._channels[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def close(self) -> None:
        """Signal every subscriber to stop."""
        async with self._lock:
            for queues in self._channels.values():
                for queue in queues:
                    try:
                        queue.put_nowait(None)
                    except asyncio.QueueFull:
                        # Make room for the shutdown signal
                        queue.get_nowait()
                        queue.put_nowait(None)
            self._channels.clear()
