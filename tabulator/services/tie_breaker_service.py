"""
Tie-Breaker Sub-protocol

A short-lived voting round nested in the session state. The operator opens
it after reviewing tie groups, judges cast one vote each (re-voting
overwrites), and the operator ends it after reading the tally. Nothing is
decided automatically and the round has no timeout.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.core.timeutil import utcnow
from tabulator.exceptions import TieBreakerError
from tabulator.orm.live_event_log import LiveEventType
from tabulator.orm.session_state import TieBreakerVote
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.services.aggregation_engine import tally_votes
from tabulator.services.live_event_service import (
    append_event, commit_event, event_write_lock, publish_event
)
from tabulator.services.session_state_service import get_or_create_state, get_state

logger = logging.getLogger(__name__)


async def get_votes(db: AsyncSession, event_id: str) -> Dict[str, str]:
    """judge_id -> candidate_id for the running round."""
    result = await db.execute(
        select(TieBreakerVote).where(TieBreakerVote.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return {vote.judge_id: vote.candidate_id for vote in result.scalars().all()}


async def get_tally(db: AsyncSession, event_id: str) -> Dict[str, int]:
    """Vote count per tied candidate. Empty when no round is running."""
    state = await get_state(db, event_id)
    if state is None or not state.tie_breaker_active:
        return {}
    votes = await get_votes(db, event_id)
    return tally_votes(votes, state.tie_breaker_candidates or [])


async def start_tie_breaker(
    db: AsyncSession,
    event_id: str,
    candidate_ids: List[str],
    adapter: Optional[BroadcastAdapter] = None
) -> Dict[str, object]:
    """
    Open a round among the tied candidates.

    Duplicate ids are collapsed, keeping first-seen order. Any round
    already running is replaced and its votes discarded.

    Raises:
        TieBreakerError: Fewer than two distinct candidates
    """
    ordered = list(dict.fromkeys(cid for cid in candidate_ids if cid))
    if len(ordered) < 2:
        raise TieBreakerError(
            "A tie-breaker needs at least two candidates",
            code="TIE_BREAKER_TOO_FEW_CANDIDATES",
            details={"candidate_ids": ordered}
        )

    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        await db.execute(delete(TieBreakerVote).where(TieBreakerVote.event_id == event_id))

        state.tie_breaker_active = True
        state.tie_breaker_candidates = ordered
        state.bump()

        entry = await append_event(
            db, event_id, LiveEventType.TIE_BREAKER_STARTED, {"candidate_ids": ordered}
        )
        await commit_event(db, event_id)

    logger.info(f"Tie-breaker started for event {event_id} among {len(ordered)} candidates")
    await publish_event(entry, adapter)
    return {"active": True, "candidate_ids": ordered, "votes": {}}


async def cast_tie_vote(
    db: AsyncSession,
    event_id: str,
    judge_id: str,
    candidate_id: str,
    adapter: Optional[BroadcastAdapter] = None
) -> TieBreakerVote:
    """
    Record the judge's vote, overwriting a previous one.

    Raises:
        TieBreakerError: No round running, or candidate not in the round
    """
    async with event_write_lock(event_id):
        state = await get_state(db, event_id)
        if state is None or not state.tie_breaker_active:
            raise TieBreakerError("No tie-breaker is running", code="TIE_BREAKER_NOT_ACTIVE")
        if candidate_id not in (state.tie_breaker_candidates or []):
            raise TieBreakerError(
                "Candidate is not part of the tie-breaker",
                code="INVALID_TIE_VOTE",
                details={"candidate_id": candidate_id}
            )

        result = await db.execute(
            select(TieBreakerVote).where(
                TieBreakerVote.event_id == event_id,
                TieBreakerVote.judge_id == judge_id
            )
        )
        vote = result.scalar_one_or_none()
        if vote is None:
            vote = TieBreakerVote(event_id=event_id, judge_id=judge_id, candidate_id=candidate_id)
            db.add(vote)
        else:
            vote.candidate_id = candidate_id
            vote.cast_at = utcnow()

        entry = await append_event(
            db, event_id, LiveEventType.TIE_VOTE_CAST,
            {"judge_id": judge_id, "candidate_id": candidate_id}
        )
        await commit_event(db, event_id)

    logger.debug(f"Tie vote by judge {judge_id} for {candidate_id}")
    await publish_event(entry, adapter)
    return vote


async def end_tie_breaker(
    db: AsyncSession,
    event_id: str,
    adapter: Optional[BroadcastAdapter] = None
) -> Dict[str, int]:
    """
    Close the round.

    Returns the final tally for the operator, then clears the round and its
    votes. Ending when no round is running returns an empty tally.
    """
    async with event_write_lock(event_id):
        state = await get_or_create_state(db, event_id)
        final_tally: Dict[str, int] = {}
        if state.tie_breaker_active:
            votes = await get_votes(db, event_id)
            final_tally = tally_votes(votes, state.tie_breaker_candidates or [])

        await db.execute(delete(TieBreakerVote).where(TieBreakerVote.event_id == event_id))
        state.tie_breaker_active = False
        state.tie_breaker_candidates = None
        state.bump()

        entry = await append_event(
            db, event_id, LiveEventType.TIE_BREAKER_ENDED, {"tally": final_tally}
        )
        await commit_event(db, event_id)

    logger.info(f"Tie-breaker ended for event {event_id}: {final_tally}")
    await publish_event(entry, adapter)
    return final_tally
