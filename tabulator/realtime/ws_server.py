"""
WebSocket Server

WebSocket endpoint for real-time tabulation updates.
Read-only, server-authoritative, idempotent delivery.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from tabulator.config.feature_flags import feature_flags
from tabulator.core.timeutil import utcnow
from tabulator.database import get_session_factory
from tabulator.rbac import actor_from_token
from tabulator.realtime.connection_manager import (
    ConnectionManager, get_connection_manager, set_connection_manager
)
from tabulator.realtime.in_memory_adapter import InMemoryAdapter
from tabulator.services.live_event_service import (
    get_broadcast_adapter, get_events_since, get_latest_sequence
)
from tabulator.services.read_model_service import (
    EventSnapshot, leaderboard_for, load_snapshot, tie_groups_for
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Live"])

# Allowed client message types
ALLOWED_CLIENT_MESSAGES = {"PING", "ACK", "REQUEST_STATE"}


def _dumps(message: Dict[str, Any]) -> str:
    return json.dumps(message, sort_keys=True)


def build_snapshot_message(snapshot: EventSnapshot) -> Dict[str, Any]:
    """Full state for the active segment, tagged with the log sequence."""
    segment_id = snapshot.session.active_segment_id
    return {
        "type": "SNAPSHOT",
        "event_id": snapshot.event_id,
        "event_sequence": snapshot.sequence,
        "data": {
            "session": snapshot.session.to_dict(),
            "segment_id": segment_id,
            "leaderboard": [e.to_dict() for e in leaderboard_for(snapshot, segment_id)],
            "tie_groups": [g.to_dict() for g in tie_groups_for(snapshot, segment_id)],
        }
    }


async def load_snapshot_message(event_id: str, session_factory: async_sessionmaker) -> Dict[str, Any]:
    async with session_factory() as db:
        snapshot = await load_snapshot(db, event_id)
    return build_snapshot_message(snapshot)


async def send_snapshot(websocket: WebSocket, event_id: str, session_factory: async_sessionmaker) -> int:
    """Send a snapshot straight to the socket. Returns its sequence."""
    message = await load_snapshot_message(event_id, session_factory)
    await websocket.send_text(_dumps(message))
    return message["event_sequence"]


async def send_delta_events(
    websocket: WebSocket,
    event_id: str,
    last_sequence: int,
    session_factory: async_sessionmaker
) -> int:
    """Send log entries after last_sequence, oldest first. Returns the last sequence sent."""
    async with session_factory() as db:
        events = await get_events_since(event_id, last_sequence, db)
    for event in events:
        await websocket.send_text(_dumps(event.to_message()))
    return events[-1].event_sequence if events else last_sequence


def _get_or_create_manager() -> ConnectionManager:
    manager = get_connection_manager()
    if not manager:
        adapter = get_broadcast_adapter() or InMemoryAdapter()
        manager = ConnectionManager(adapter)
        set_connection_manager(manager)
    return manager


async def open_stream(
    websocket: WebSocket,
    manager: ConnectionManager,
    event_id: str,
    role: str,
    subject_id: Optional[str],
    last_sequence: int,
    session_factory: async_sessionmaker
) -> int:
    """
    Bring an accepted socket up to date, then hand it to the manager.

    The initial snapshot (or delta replay) is written before the socket is
    registered, so nothing else writes to it yet and live events cannot
    overtake it. Once registered, the manager's sender is the only writer.
    Writes committed between the initial send and registration are covered
    by a fresh snapshot queued behind the live events.

    Returns:
        The sequence the client has been brought up to
    """
    if last_sequence > 0 and feature_flags.FEATURE_WS_DELTA_REPLAY:
        sent_sequence = await send_delta_events(websocket, event_id, last_sequence, session_factory)
    else:
        sent_sequence = await send_snapshot(websocket, event_id, session_factory)

    await manager.connect(
        websocket=websocket,
        event_id=event_id,
        role=role,
        subject_id=subject_id,
        last_sequence=sent_sequence
    )

    async with session_factory() as db:
        latest = await get_latest_sequence(event_id, db)
    if latest > sent_sequence:
        manager.send_to(websocket, event_id, await load_snapshot_message(event_id, session_factory))
        return latest
    return sent_sequence


@router.websocket("/live/ws/{event_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    event_id: str,
    token: str = Query(...),
    last_sequence: int = Query(0, ge=0),
    session_factory: async_sessionmaker = Depends(get_session_factory)
):
    """
    WebSocket endpoint for live tabulation.

    URL: /live/ws/{event_id}?token={jwt}&last_sequence={n}

    Allowed client messages:
    - {"type": "PING"}
    - {"type": "ACK", "last_sequence": 20}
    - {"type": "REQUEST_STATE"}

    Server messages:
    - {"type": "EVENT", "event_sequence": n, "event_hash": "...", "payload": {...}}
    - {"type": "SNAPSHOT", "event_sequence": n, "data": {...}}
    - {"type": "PONG"}
    - {"type": "ERROR", "message": "..."}
    """
    actor = actor_from_token(token)
    if actor is None:
        await websocket.close(code=1008, reason="Invalid token")
        return
    if actor.event_id != event_id:
        await websocket.close(code=1008, reason="Event mismatch")
        return

    manager = _get_or_create_manager()

    await websocket.accept()

    try:
        sequence = await open_stream(
            websocket, manager, event_id, actor.role, actor.subject_id, last_sequence, session_factory
        )
        logger.info(f"WebSocket connected: {actor.role} on event {event_id} at #{sequence}")

        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                manager.send_to(websocket, event_id, {"type": "ERROR", "message": "Invalid JSON"})
                continue

            msg_type = message.get("type") if isinstance(message, dict) else None

            if msg_type not in ALLOWED_CLIENT_MESSAGES:
                manager.send_to(websocket, event_id, {
                    "type": "ERROR",
                    "message": f"Invalid message type. Allowed: {sorted(ALLOWED_CLIENT_MESSAGES)}"
                })
                continue

            if msg_type == "PING":
                manager.send_to(websocket, event_id, {
                    "type": "PONG",
                    "timestamp": utcnow().isoformat()
                })

            elif msg_type == "ACK":
                ack_sequence = message.get("last_sequence", 0)
                if isinstance(ack_sequence, int):
                    manager.update_ack(websocket, ack_sequence)

            elif msg_type == "REQUEST_STATE":
                manager.send_to(websocket, event_id, await load_snapshot_message(event_id, session_factory))

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {actor.role} on event {event_id}")
    finally:
        await manager.disconnect(websocket, event_id)
