"""
Judge scorecard routes.

Every route acts on the calling judge's own rows only: the judge id comes
from the identity tuple, never from the request.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.config.settings import settings
from tabulator.database import get_db
from tabulator.exceptions import NotFoundError
from tabulator.middleware.rate_limit import limiter
from tabulator.rbac import Actor, require_judge
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.realtime.draft_debouncer import DraftDebouncer, get_draft_debouncer
from tabulator.schemas.scoring import (
    DraftAcceptedResponse, DraftScoreRequest, ScoreResponse, TieVoteRequest,
    TieVoteResponse, UnlockRequestResponse
)
from tabulator.services import score_ledger_service, session_state_service, tie_breaker_service
from tabulator.services.live_event_service import get_broadcast_adapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events/{event_id}/scorecard", tags=["Scorecard"])


async def _check_triple(
    db: AsyncSession,
    event_id: str,
    segment_id: str,
    candidate_id: str,
    judge_id: str
) -> None:
    """Event must be active and the triple must belong to it."""
    await score_ledger_service.ensure_event_active(db, event_id)
    segment, _ = await score_ledger_service.load_scoring_context(db, segment_id, candidate_id, judge_id)
    if segment.event_id != event_id:
        raise NotFoundError("Segment", segment_id)


@router.put(
    "/segments/{segment_id}/candidates/{candidate_id}/draft",
    response_model=DraftAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED
)
@limiter.limit(settings.DRAFT_RATE_LIMIT)
async def save_draft(
    request: Request,  # Required by slowapi
    event_id: str,
    segment_id: str,
    candidate_id: str,
    body: DraftScoreRequest,
    actor: Actor = Depends(require_judge),
    db: AsyncSession = Depends(get_db),
    debouncer: Optional[DraftDebouncer] = Depends(get_draft_debouncer),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    """
    Auto-save a draft.

    Accepted immediately; the write happens once the scorecard has been
    quiet for the debounce period. Without a debouncer the draft is
    written synchronously.
    """
    await _check_triple(db, event_id, segment_id, candidate_id, actor.judge_id)

    if debouncer is not None:
        debouncer.submit((segment_id, candidate_id, actor.judge_id), body.criteria_scores, body.notes)
    else:
        await score_ledger_service.submit_draft(
            db, segment_id, candidate_id, actor.judge_id,
            body.criteria_scores, notes=body.notes, adapter=adapter
        )

    return DraftAcceptedResponse(
        segment_id=segment_id,
        candidate_id=candidate_id,
        debounce_ms=settings.DRAFT_DEBOUNCE_MS if debouncer is not None else 0
    )


@router.post(
    "/segments/{segment_id}/candidates/{candidate_id}/lock",
    response_model=ScoreResponse
)
async def lock_scorecard(
    event_id: str,
    segment_id: str,
    candidate_id: str,
    actor: Actor = Depends(require_judge),
    db: AsyncSession = Depends(get_db),
    debouncer: Optional[DraftDebouncer] = Depends(get_draft_debouncer),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    """Lock in the scorecard. A pending draft is written first."""
    await _check_triple(db, event_id, segment_id, candidate_id, actor.judge_id)

    if debouncer is not None:
        await debouncer.flush((segment_id, candidate_id, actor.judge_id))

    row = await score_ledger_service.lock_in(
        db, segment_id, candidate_id, actor.judge_id, adapter=adapter
    )
    return row.to_dict()


@router.post(
    "/segments/{segment_id}/candidates/{candidate_id}/unlock-request",
    response_model=UnlockRequestResponse,
    status_code=status.HTTP_201_CREATED
)
async def request_unlock(
    event_id: str,
    segment_id: str,
    candidate_id: str,
    actor: Actor = Depends(require_judge),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    await _check_triple(db, event_id, segment_id, candidate_id, actor.judge_id)
    unlock_request = await session_state_service.request_unlock(
        db, event_id, actor.judge_id, candidate_id, segment_id, adapter=adapter
    )
    return unlock_request.to_dict()


@router.get(
    "/segments/{segment_id}/candidates/{candidate_id}",
    response_model=Optional[ScoreResponse]
)
async def get_own_score(
    event_id: str,
    segment_id: str,
    candidate_id: str,
    actor: Actor = Depends(require_judge),
    db: AsyncSession = Depends(get_db)
):
    """The caller's scorecard, or null when nothing has been saved yet."""
    row = await score_ledger_service.score_of(db, segment_id, candidate_id, actor.judge_id)
    if row is None or row.event_id != event_id:
        return None
    return row.to_dict()


@router.post("/tie-breaker/vote", response_model=TieVoteResponse)
async def cast_tie_vote(
    event_id: str,
    body: TieVoteRequest,
    actor: Actor = Depends(require_judge),
    db: AsyncSession = Depends(get_db),
    adapter: Optional[BroadcastAdapter] = Depends(get_broadcast_adapter)
):
    await score_ledger_service.ensure_event_active(db, event_id)
    vote = await tie_breaker_service.cast_tie_vote(
        db, event_id, actor.judge_id, body.candidate_id, adapter=adapter
    )
    return TieVoteResponse(judge_id=vote.judge_id, candidate_id=vote.candidate_id)
