"""
WebSocket Connection Manager

Manages WebSocket connections per event. One relay task per event channel
consumes the broadcast adapter and fans messages out to this worker's
sockets, so the in-memory and Redis adapters share one delivery path.
"""
import asyncio
import json
import logging
from typing import Dict, Optional, Any

from fastapi import WebSocket

from tabulator.core.timeutil import utcnow
from .broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections for live tabulation.

    Per-worker state:
    - Local WebSocket connections and their send queues
    - One relay task per event with at least one connection

    Design principles:
    - The database is source of truth
    - The broadcast adapter is delivery-only
    - WebSocket is read-only for clients
    - All events include event_sequence for idempotency
    """

    def __init__(
        self,
        broadcast_adapter: BroadcastAdapter,
        max_queue_size: int = 100
    ):
        self.broadcast_adapter = broadcast_adapter
        self.max_queue_size = max_queue_size

        # {event_id: {websocket: metadata}}
        self.connections: Dict[str, Dict[WebSocket, Dict[str, Any]]] = {}

        # Message queues per WebSocket for backpressure
        self.message_queues: Dict[WebSocket, asyncio.Queue] = {}
        self._sender_tasks: Dict[WebSocket, asyncio.Task] = {}
        self._relay_tasks: Dict[str, asyncio.Task] = {}

        # Last acknowledged sequence per connection
        self.last_ack: Dict[WebSocket, int] = {}

    async def connect(
        self,
        websocket: WebSocket,
        event_id: str,
        role: str,
        subject_id: Optional[str] = None,
        last_sequence: int = 0
    ) -> None:
        """
        Register an accepted WebSocket.

        Args:
            websocket: Accepted WebSocket
            event_id: Event the client follows
            role: admin, judge or committee
            subject_id: Judge or committee member id
            last_sequence: Last event sequence the client has applied
        """
        self.connections.setdefault(event_id, {})[websocket] = {
            "role": role,
            "subject_id": subject_id,
            "connected_at": utcnow(),
            "last_sequence": last_sequence
        }

        self.message_queues[websocket] = asyncio.Queue(maxsize=self.max_queue_size)
        self._sender_tasks[websocket] = asyncio.create_task(self._message_sender(websocket))

        if event_id not in self._relay_tasks:
            self._relay_tasks[event_id] = asyncio.create_task(self._relay(event_id))

    async def disconnect(self, websocket: WebSocket, event_id: str) -> None:
        if event_id in self.connections:
            self.connections[event_id].pop(websocket, None)
            if not self.connections[event_id]:
                del self.connections[event_id]
                relay = self._relay_tasks.pop(event_id, None)
                if relay:
                    relay.cancel()

        sender = self._sender_tasks.pop(websocket, None)
        if sender:
            sender.cancel()

        self.message_queues.pop(websocket, None)
        self.last_ack.pop(websocket, None)

    def broadcast_to_event(self, event_id: str, message: Dict[str, Any]) -> None:
        """
        Queue a message for every local connection following the event.

        Connections that already hold the message's sequence skip it. A full
        queue drops its oldest message.
        """
        if event_id not in self.connections:
            return

        serialized = json.dumps(message, sort_keys=True)
        sequence = message.get("event_sequence")

        for websocket, metadata in list(self.connections[event_id].items()):
            if isinstance(sequence, int) and sequence <= metadata["last_sequence"]:
                continue
            self._enqueue(websocket, metadata, serialized, sequence)

    def send_to(self, websocket: WebSocket, event_id: str, message: Dict[str, Any]) -> None:
        """Queue a message for one connection, behind anything already queued."""
        metadata = self.connections.get(event_id, {}).get(websocket)
        if metadata is None:
            return
        self._enqueue(websocket, metadata, json.dumps(message, sort_keys=True), message.get("event_sequence"))

    def _enqueue(
        self,
        websocket: WebSocket,
        metadata: Dict[str, Any],
        serialized: str,
        sequence: Any
    ) -> None:
        queue = self.message_queues.get(websocket)
        if queue is None:
            return
        try:
            queue.put_nowait(serialized)
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
                queue.put_nowait(serialized)
            except asyncio.QueueEmpty:
                pass

        if isinstance(sequence, int):
            metadata["last_sequence"] = max(metadata["last_sequence"], sequence)

    async def _relay(self, event_id: str) -> None:
        """Consume the event channel and fan out locally until cancelled."""
        channel = f"event:{event_id}"
        try:
            async for message in self.broadcast_adapter.subscribe(channel):
                self.broadcast_to_event(event_id, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Relay for {channel} stopped: {e}")

    async def _message_sender(self, websocket: WebSocket) -> None:
        queue = self.message_queues.get(websocket)
        if not queue:
            return

        while True:
            message = await queue.get()
            if message is None:
                break
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed, stopping sender: {e}")
                break

    def get_connection_count(self, event_id: Optional[str] = None) -> int:
        if event_id is not None:
            return len(self.connections.get(event_id, {}))
        return sum(len(conns) for conns in self.connections.values())

    def update_ack(self, websocket: WebSocket, sequence: int) -> None:
        self.last_ack[websocket] = max(self.last_ack.get(websocket, 0), sequence)

    async def close(self) -> None:
        """Cancel relay and sender tasks. Sockets are closed by their handlers."""
        for task in list(self._relay_tasks.values()) + list(self._sender_tasks.values()):
            task.cancel()
        self._relay_tasks.clear()
        self._sender_tasks.clear()


# Global connection manager instance (initialized on startup)
_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> Optional[ConnectionManager]:
    """Get global connection manager instance."""
    return _connection_manager


def set_connection_manager(manager: Optional[ConnectionManager]) -> None:
    """Set global connection manager instance."""
    global _connection_manager
    _connection_manager = manager
