"""
Control room routes (operator only).

The operator is the single writer of the session state. Active segment and
candidate are overwritten without validation; a stale id renders as
nothing found in dependent views.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.database import get_db
from tabulator.rbac import Actor, require_admin
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.schemas.scoring import UnlockRequestResponse
from tabulator.schemas.session import (
    ActiveCandidateRequest, ActiveSegmentRequest, PauseRequest, ResolveUnlockRequest,
    StartTieBreakerRequest, TieBreakerEndResponse, TieBreakerView
)
from tabulator.services import session_state_service, tie_breaker_service
from tabulator.services.live_event_service import get_broadcast_adapter
from tabulator.state_machines.session_phase import derive_phase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events/{event_id}/control", tags=["Control Room"])


def _state_response(state) -> dict:
    return {
        "success": True,
        "event_id": state.event_id,
        "active_segment_id": state.active_segment_id,
        "active_candidate_id": state.active_candidate_id,
        "is_paused": bool(state.is_paused),
        "phase": derive_phase(state).value,
        "version": state.version,
    }


@router.post("/session/start")
async def start_session(
    event_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    """Go live on the first segment and first candidate."""
    state = await session_state_service.start_session(db, event_id, adapter=adapter)
    return _state_response(state)


@router.put("/session/active-segment")
async def set_active_segment(
    event_id: str,
    body: ActiveSegmentRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    state = await session_state_service.set_active_segment(db, event_id, body.segment_id, adapter=adapter)
    return _state_response(state)


@router.put("/session/active-candidate")
async def set_active_candidate(
    event_id: str,
    body: ActiveCandidateRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    state = await session_state_service.set_active_candidate(db, event_id, body.candidate_id, adapter=adapter)
    return _state_response(state)


@router.put("/session/pause")
async def set_paused(
    event_id: str,
    body: PauseRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    state = await session_state_service.set_paused(db, event_id, body.paused, adapter=adapter)
    return _state_response(state)


@router.post("/unlock-requests/{request_id}/resolve", response_model=UnlockRequestResponse)
async def resolve_unlock(
    event_id: str,
    request_id: str,
    body: ResolveUnlockRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    """Approve (reopens the scorecard) or reject an unlock request."""
    unlock_request = await session_state_service.resolve_unlock(
        db, event_id, request_id, body.approve, adapter=adapter
    )
    return unlock_request.to_dict()


@router.post("/tie-breaker", response_model=TieBreakerView)
async def start_tie_breaker(
    event_id: str,
    body: StartTieBreakerRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    round_state = await tie_breaker_service.start_tie_breaker(
        db, event_id, body.candidate_ids, adapter=adapter
    )
    return TieBreakerView(active=True, candidate_ids=round_state["candidate_ids"])


@router.delete("/tie-breaker", response_model=TieBreakerEndResponse)
async def end_tie_breaker(
    event_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    """End the round. The final tally is returned; the outcome is the operator's call."""
    final_tally = await tie_breaker_service.end_tie_breaker(db, event_id, adapter=adapter)
    return TieBreakerEndResponse(final_tally=final_tally)
