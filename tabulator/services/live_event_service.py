"""
Live event log and publish-on-write.

Every accepted mutation appends exactly one hash-chained log entry inside
the caller's transaction. The caller commits, then publishes. Subscribers
never see an event that is not durable.

Sequence assignment:
- Within one process, writes to an event are serialized by an asyncio.Lock
- Across workers, the unique (event_id, event_sequence) constraint rejects
  the loser of a race, which surfaces as ConcurrentModificationError
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.exceptions import ConcurrentModificationError
from tabulator.orm.live_event_log import LiveEventLog, GENESIS_HASH
from tabulator.core.timeutil import utcnow
from tabulator.realtime.broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)

_event_locks: Dict[str, asyncio.Lock] = {}

# Global broadcast adapter (set during app startup)
_broadcast_adapter: Optional[BroadcastAdapter] = None


def get_broadcast_adapter() -> Optional[BroadcastAdapter]:
    """Get the global broadcast adapter, if one is configured."""
    return _broadcast_adapter


def set_broadcast_adapter(adapter: Optional[BroadcastAdapter]) -> None:
    """Set the global broadcast adapter."""
    global _broadcast_adapter
    _broadcast_adapter = adapter


def channel_for(event_id: str) -> str:
    return f"event:{event_id}"


@asynccontextmanager
async def event_write_lock(event_id: str):
    """Serialize writers of one event within this process."""
    lock = _event_locks.get(event_id)
    if lock is None:
        lock = _event_locks.setdefault(event_id, asyncio.Lock())
    async with lock:
        yield


# =============================================================================
# Event Log
# =============================================================================

def _latest_event_query(event_id: str, for_update: bool = False):
    query = (
        select(LiveEventLog.event_hash, LiveEventLog.event_sequence)
        .where(LiveEventLog.event_id == event_id)
        .order_by(LiveEventLog.event_sequence.desc())
        .limit(1)
    )
    # Only writers take the row lock; readers must not queue behind them
    return query.with_for_update() if for_update else query


async def _get_last_event_hash_and_sequence(
    event_id: str,
    db: AsyncSession,
    for_update: bool = False
) -> Tuple[str, int]:
    result = await db.execute(_latest_event_query(event_id, for_update))
    row = result.one_or_none()

    if row:
        return row[0], row[1]

    return GENESIS_HASH, 0


async def append_event(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    payload: Dict[str, Any]
) -> LiveEventLog:
    """
    Append an event to the log with chain hash.

    Must run inside event_write_lock(event_id) and before the caller's
    commit. Flushes, does not commit.

    Args:
        db: Session holding the mutation this event describes
        event_id: Competition the event belongs to
        event_type: One of LiveEventType
        payload: JSON-serializable description of the change

    Returns:
        The pending LiveEventLog row
    """
    previous_hash, last_sequence = await _get_last_event_hash_and_sequence(event_id, db, for_update=True)

    next_sequence = last_sequence + 1
    created_at = utcnow()

    normalized_payload = json.loads(json.dumps(payload, sort_keys=True, default=str))

    event_hash = LiveEventLog.compute_event_hash(
        previous_hash=previous_hash,
        event_sequence=next_sequence,
        event_type=event_type,
        payload=normalized_payload,
        created_at=created_at
    )

    entry = LiveEventLog(
        event_id=event_id,
        event_sequence=next_sequence,
        event_type=event_type,
        event_payload_json=normalized_payload,
        previous_hash=previous_hash,
        event_hash=event_hash,
        created_at=created_at
    )

    db.add(entry)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(f"Sequence conflict on event {event_id} at #{next_sequence}")
        raise ConcurrentModificationError(event_id) from exc

    return entry


async def commit_event(db: AsyncSession, event_id: str) -> None:
    """Commit the mutation and its log entry, mapping sequence races to 409."""
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning(f"Sequence conflict on event {event_id}: {exc.orig}")
        raise ConcurrentModificationError(event_id) from exc


async def publish_event(
    entry: LiveEventLog,
    adapter: Optional[BroadcastAdapter] = None
) -> None:
    """
    Publish a committed log entry to subscribers.

    Delivery is best effort: the database is the source of truth and a
    subscriber that misses a message catches up on the next one, or by
    replaying the log on reconnect.
    """
    adapter = adapter or get_broadcast_adapter()
    if adapter is None:
        return

    try:
        await adapter.publish(channel_for(entry.event_id), entry.to_message())
    except Exception as e:
        logger.error(f"Broadcast failed for {entry.event_id}#{entry.event_sequence}: {e}")


# =============================================================================
# Queries
# =============================================================================

async def get_latest_sequence(event_id: str, db: AsyncSession) -> int:
    _, sequence = await _get_last_event_hash_and_sequence(event_id, db)
    return sequence


async def get_events_since(
    event_id: str,
    after_sequence: int,
    db: AsyncSession
) -> List[LiveEventLog]:
    """Log entries after a sequence number, oldest first. Used for delta replay."""
    result = await db.execute(
        select(LiveEventLog)
        .where(
            LiveEventLog.event_id == event_id,
            LiveEventLog.event_sequence > after_sequence
        )
        .order_by(LiveEventLog.event_sequence.asc())
    )
    return list(result.scalars().all())


async def verify_event_chain(event_id: str, db: AsyncSession) -> Dict[str, Any]:
    """
    Recompute the chain from genesis.

    Checks sequence continuity, previous-hash links and every stored hash.
    Stops at the first broken link.
    """
    events = await get_events_since(event_id, 0, db)

    previous_hash = GENESIS_HASH
    expected_sequence = 1
    issue = None

    for event in events:
        if event.event_sequence != expected_sequence:
            issue = {
                "event_sequence": event.event_sequence,
                "issue": "Sequence gap or reordering detected"
            }
            break
        if event.previous_hash != previous_hash:
            issue = {
                "event_sequence": event.event_sequence,
                "issue": "Previous hash mismatch - chain broken"
            }
            break
        if not event.verify_hash():
            issue = {
                "event_sequence": event.event_sequence,
                "issue": "Event hash mismatch - tampering detected"
            }
            break

        previous_hash = event.event_hash
        expected_sequence += 1

    return {
        "event_id": event_id,
        "valid": issue is None,
        "total_events": len(events),
        "issue": issue,
    }
