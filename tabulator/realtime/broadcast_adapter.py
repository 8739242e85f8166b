"""
Broadcast adapter interface.

Adapters only carry change notifications for an event channel. A subscriber
that misses a message recovers by reloading the snapshot, so adapters never
retry and never persist anything.
"""
import abc
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

# Subscribers deduplicate and order by these
REQUIRED_MESSAGE_FIELDS = ("event_id", "event_sequence", "event_hash")


class BroadcastAdapter(abc.ABC):
    """Publish/subscribe over per-event channels ("event:<event_id>")."""

    @abc.abstractmethod
    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(self, channel: str) -> AsyncIterator[Dict[str, Any]]:
        """Async generator of decoded messages, starting from the moment of subscription."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    def validate_message(self, message: Dict[str, Any]) -> None:
        """
        Raises:
            ValueError: A field in REQUIRED_MESSAGE_FIELDS is missing
        """
        missing = [name for name in REQUIRED_MESSAGE_FIELDS if name not in message]
        if missing:
            raise ValueError(f"Message missing required fields: {missing}")

    def encode(self, message: Dict[str, Any]) -> str:
        """Validate, then serialize with sorted keys so every worker sends identical bytes."""
        self.validate_message(message)
        return json.dumps(message, sort_keys=True, separators=(",", ":"))

    def decode(self, raw: str, channel: str) -> Optional[Dict[str, Any]]:
        """Parse a wire message; None for anything that is not a JSON object."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding malformed message on {channel}")
            return None
        return message if isinstance(message, dict) else None
