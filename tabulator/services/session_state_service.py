"""
Session State Service

The single source of truth for "what is live right now": active segment,
active candidate, pause flag, and the unlock-request side channel.

Single-writer discipline: only the operator changes the session fields.
Two racing operators resolve by last write wins; `version` is bumped on
every write but never compared.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.config.feature_flags import feature_flags
from tabulator.core.timeutil import utcnow
from tabulator.exceptions import NotFoundError, ScoreNotLockedError, SessionPreconditionError
from tabulator.orm.event import Candidate, Event, Segment
from tabulator.orm.live_event_log import LiveEventLog, LiveEventType
from tabulator.orm.session_state import SessionState, UnlockRequest, UnlockRequestStatus
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.services import score_ledger_service
from tabulator.services.live_event_service import (
    append_event, commit_event, event_write_lock, publish_event
)
from tabulator.state_machines.session_phase import derive_phase

logger = logging.getLogger(__name__)


def _state_payload(state: SessionState) -> dict:
    return {
        "active_segment_id": state.active_segment_id,
        "active_candidate_id": state.active_candidate_id,
        "is_paused": bool(state.is_paused),
        "phase": derive_phase(state).value,
        "version": state.version,
    }


async def _require_event(db: AsyncSession, event_id: str) -> Event:
    event = await db.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFoundError("Event", event_id)
    return event


async def get_state(db: AsyncSession, event_id: str) -> Optional[SessionState]:
    """Read the session row without creating it."""
    return await db.get(SessionState, event_id, populate_existing=True)


async def get_or_create_state(db: AsyncSession, event_id: str) -> SessionState:
    """
    Load the session row, creating the IDLE singleton on first use.

    Flushes, does not commit.
    """
    state = await db.get(SessionState, event_id, populate_existing=True)
    if state is None:
        await _require_event(db, event_id)
        state = SessionState(
            event_id=event_id,
            active_segment_id=None,
            active_candidate_id=None,
            is_paused=False,
            tie_breaker_active=False,
            tie_breaker_candidates=None,
            version=0,
        )
        db.add(state)
        await db.flush()
    return state


async def _write_state(
    db: AsyncSession,
    state: SessionState,
    event_type: str
) -> LiveEventLog:
    """Bump, log and commit. Caller holds the event write lock and publishes."""
    state.bump()
    entry = await append_event(db, state.event_id, event_type, _state_payload(state))
    await commit_event(db, state.event_id)
    return entry


# =============================================================================
# Operator transitions
# =============================================================================

async def start_session(
    db: AsyncSession,
    event_id: str,
    adapter: Optional[BroadcastAdapter] = None
) -> SessionState:
    """
    Point the session at the first segment and first candidate.

    Ordering: segments by (display_order, name), candidates by number.
    Clears the pause flag.

    Raises:
        SessionPreconditionError: No segments or no candidates
        NotFoundError: Unknown event
    """
    await _require_event(db, event_id)

    segment_result = await db.execute(
        select(Segment)
        .where(Segment.event_id == event_id)
        .order_by(Segment.display_order.asc(), Segment.name.asc())
        .limit(1)
    )
    first_segment = segment_result.scalar_one_or_none()

    candidate_result = await db.execute(
        select(Candidate)
        .where(Candidate.event_id == event_id)
        .order_by(Candidate.number.asc())
        .limit(1)
    )
    first_candidate = candidate_result.scalar_one_or_none()

    if first_segment is None:
        raise SessionPreconditionError("Add at least one segment before starting the session", "segments")
    if first_candidate is None:
        raise SessionPreconditionError("Add at least one candidate before starting the session", "candidates")

    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        state.active_segment_id = first_segment.id
        state.active_candidate_id = first_candidate.id
        state.is_paused = False
        entry = await _write_state(db, state, LiveEventType.SESSION_STARTED)

    logger.info(
        f"Session started for event {event_id}: segment={first_segment.id} candidate=#{first_candidate.number}"
    )
    await publish_event(entry, adapter)
    return state


async def set_active_segment(
    db: AsyncSession,
    event_id: str,
    segment_id: Optional[str],
    adapter: Optional[BroadcastAdapter] = None
) -> SessionState:
    """Unconditional overwrite. A stale id is tolerated and renders as nothing found."""
    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        state.active_segment_id = segment_id
        entry = await _write_state(db, state, LiveEventType.ACTIVE_SEGMENT_CHANGED)

    logger.info(f"Active segment for event {event_id} -> {segment_id}")
    await publish_event(entry, adapter)
    return state


async def set_active_candidate(
    db: AsyncSession,
    event_id: str,
    candidate_id: Optional[str],
    adapter: Optional[BroadcastAdapter] = None
) -> SessionState:
    """Unconditional overwrite, same as set_active_segment."""
    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        state.active_candidate_id = candidate_id
        entry = await _write_state(db, state, LiveEventType.ACTIVE_CANDIDATE_CHANGED)

    logger.info(f"Active candidate for event {event_id} -> {candidate_id}")
    await publish_event(entry, adapter)
    return state


async def set_paused(
    db: AsyncSession,
    event_id: str,
    paused: bool,
    adapter: Optional[BroadcastAdapter] = None
) -> SessionState:
    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        state.is_paused = bool(paused)
        entry = await _write_state(db, state, LiveEventType.SESSION_PAUSE_CHANGED)

    logger.info(f"Session for event {event_id} {'paused' if paused else 'resumed'}")
    await publish_event(entry, adapter)
    return state


# =============================================================================
# Unlock workflow
# =============================================================================

async def list_pending_unlock_requests(db: AsyncSession, event_id: str) -> List[UnlockRequest]:
    result = await db.execute(
        select(UnlockRequest)
        .where(
            UnlockRequest.event_id == event_id,
            UnlockRequest.status == UnlockRequestStatus.PENDING
        )
        .order_by(UnlockRequest.requested_at.asc())
    )
    return list(result.scalars().all())


async def request_unlock(
    db: AsyncSession,
    event_id: str,
    judge_id: str,
    candidate_id: str,
    segment_id: str,
    adapter: Optional[BroadcastAdapter] = None
) -> UnlockRequest:
    """
    Judge asks the operator to reopen a locked scorecard.

    While a request for the same triple is pending, the pending request is
    returned instead of adding a duplicate (FEATURE_DEDUPE_UNLOCK_REQUESTS).

    Raises:
        ScoreNotLockedError: The scorecard does not exist or is not locked
    """
    async with event_write_lock(event_id):
        score = await score_ledger_service.score_of(db, segment_id, candidate_id, judge_id)
        if score is None or not score.locked or score.event_id != event_id:
            raise ScoreNotLockedError(segment_id, candidate_id, judge_id)

        if feature_flags.FEATURE_DEDUPE_UNLOCK_REQUESTS:
            existing_result = await db.execute(
                select(UnlockRequest).where(
                    UnlockRequest.event_id == event_id,
                    UnlockRequest.judge_id == judge_id,
                    UnlockRequest.candidate_id == candidate_id,
                    UnlockRequest.segment_id == segment_id,
                    UnlockRequest.status == UnlockRequestStatus.PENDING
                )
            )
            existing = existing_result.scalars().first()
            if existing is not None:
                return existing

        request = UnlockRequest(
            event_id=event_id,
            judge_id=judge_id,
            candidate_id=candidate_id,
            segment_id=segment_id,
            status=UnlockRequestStatus.PENDING,
            requested_at=utcnow(),
        )
        db.add(request)
        await db.flush()

        entry = await append_event(db, event_id, LiveEventType.UNLOCK_REQUESTED, request.to_dict())
        await commit_event(db, event_id)

    logger.info(f"Unlock requested by judge {judge_id} for {segment_id}/{candidate_id}")
    await publish_event(entry, adapter)
    return request


async def resolve_unlock(
    db: AsyncSession,
    event_id: str,
    request_id: str,
    approve: bool,
    adapter: Optional[BroadcastAdapter] = None
) -> UnlockRequest:
    """
    Operator resolves an unlock request.

    Approve clears the referenced score's lock in the same transaction.
    Either branch removes the request from the pending set; the resolved
    row is kept for audit. Resolving an already-resolved request returns it
    unchanged.

    Raises:
        NotFoundError: Unknown request id
    """
    async with event_write_lock(event_id):
        request = await db.get(UnlockRequest, request_id, populate_existing=True)
        if request is None or request.event_id != event_id:
            raise NotFoundError("Unlock request", request_id)

        if request.status != UnlockRequestStatus.PENDING:
            return request

        if approve:
            score = await score_ledger_service.unlock_score(
                db, request.segment_id, request.candidate_id, request.judge_id
            )
            if score is None:
                logger.warning(
                    f"Unlock approved for missing score {request.segment_id}/{request.candidate_id}/{request.judge_id}"
                )

        request.status = UnlockRequestStatus.APPROVED if approve else UnlockRequestStatus.REJECTED
        request.resolved_at = utcnow()

        entry = await append_event(db, event_id, LiveEventType.UNLOCK_RESOLVED, request.to_dict())
        await commit_event(db, event_id)

    logger.info(f"Unlock request {request_id} {request.status.value}")
    await publish_event(entry, adapter)
    return request
