"""
Score Ledger.

One row per (segment, candidate, judge). Only the owning judge writes a row,
which the judge id in the row's identity enforces structurally. Locked rows
are immutable until the operator approves an unlock request.

Each accepted write appends one live event, commits, then publishes.
"""
import logging
from typing import Any, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tabulator.config.feature_flags import feature_flags
from tabulator.core.timeutil import utcnow
from tabulator.exceptions import EventNotActiveError, IncompleteScorecardError, NotFoundError
from tabulator.orm.event import Candidate, Criterion, Event, EventStatus, Judge, Segment
from tabulator.orm.live_event_log import LiveEventType
from tabulator.orm.score import JudgeScore
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.services.aggregation_engine import (
    CriterionDef, ScoreRecord, clamp_scores, missing_criteria, normalize_score, raw_total
)
from tabulator.services.live_event_service import (
    append_event, commit_event, event_write_lock, publish_event
)

logger = logging.getLogger(__name__)


# =============================================================================
# Mapping helpers
# =============================================================================

def to_criterion_def(criterion: Criterion) -> CriterionDef:
    return CriterionDef(
        id=criterion.id,
        max_score=criterion.max_score,
        weight=criterion.weight,
        name=criterion.name,
    )


def to_score_record(row: JudgeScore) -> ScoreRecord:
    return ScoreRecord(
        candidate_id=row.candidate_id,
        judge_id=row.judge_id,
        envelope=normalize_score({
            "criteria_scores": row.criteria_scores or {},
            "total": row.total,
            "locked": row.locked,
            "notes": row.notes,
        }),
    )


def _score_payload(row: JudgeScore) -> dict:
    return {
        "segment_id": row.segment_id,
        "candidate_id": row.candidate_id,
        "judge_id": row.judge_id,
        "total": row.total,
        "locked": bool(row.locked),
    }


# =============================================================================
# Lookups
# =============================================================================

async def ensure_event_active(db: AsyncSession, event_id: str) -> Event:
    """
    Judges may only write while the event is active.

    Raises:
        NotFoundError: Unknown event
        EventNotActiveError: Event in setup or completed
    """
    event = await db.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFoundError("Event", event_id)
    if feature_flags.FEATURE_REQUIRE_ACTIVE_EVENT and event.status != EventStatus.ACTIVE:
        raise EventNotActiveError(event_id, event.status.value)
    return event


async def load_scoring_context(
    db: AsyncSession,
    segment_id: str,
    candidate_id: str,
    judge_id: str
) -> Tuple[Segment, List[CriterionDef]]:
    """Resolve the triple. All three must exist and belong to one event."""
    result = await db.execute(
        select(Segment)
        .options(selectinload(Segment.criteria))
        .where(Segment.id == segment_id)
    )
    segment = result.scalar_one_or_none()
    if segment is None:
        raise NotFoundError("Segment", segment_id)

    candidate = await db.get(Candidate, candidate_id)
    if candidate is None or candidate.event_id != segment.event_id:
        raise NotFoundError("Candidate", candidate_id)

    judge = await db.get(Judge, judge_id)
    if judge is None or judge.event_id != segment.event_id:
        raise NotFoundError("Judge", judge_id)

    return segment, [to_criterion_def(c) for c in segment.criteria]


async def score_of(
    db: AsyncSession,
    segment_id: str,
    candidate_id: str,
    judge_id: str
) -> Optional[JudgeScore]:
    result = await db.execute(
        select(JudgeScore).where(
            JudgeScore.segment_id == segment_id,
            JudgeScore.candidate_id == candidate_id,
            JudgeScore.judge_id == judge_id
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Commands
# =============================================================================

async def submit_draft(
    db: AsyncSession,
    segment_id: str,
    candidate_id: str,
    judge_id: str,
    raw_scores: Optional[Mapping[str, Any]],
    notes: Optional[str] = None,
    adapter: Optional[BroadcastAdapter] = None
) -> JudgeScore:
    """
    Write or overwrite the judge's draft for a candidate.

    Values are clamped to [0, max_score] silently. The draft replaces the
    stored criteria map. notes=None keeps the stored notes.

    A locked row is left untouched and returned as-is; no event is logged.

    Raises:
        NotFoundError: Unknown segment, candidate or judge
    """
    segment, criteria = await load_scoring_context(db, segment_id, candidate_id, judge_id)
    event_id = segment.event_id

    async with event_write_lock(event_id):
        row = await score_of(db, segment_id, candidate_id, judge_id)

        if row is not None and row.locked:
            logger.warning(
                f"Draft ignored for locked score {segment_id}/{candidate_id}/{judge_id}"
            )
            return row

        clamped = clamp_scores(raw_scores, criteria)

        if row is None:
            row = JudgeScore(
                event_id=event_id,
                segment_id=segment_id,
                candidate_id=candidate_id,
                judge_id=judge_id,
            )
            db.add(row)

        row.criteria_scores = clamped
        row.total = raw_total(clamped)
        row.locked = False
        if notes is not None:
            row.notes = notes

        entry = await append_event(db, event_id, LiveEventType.SCORE_DRAFT_SAVED, _score_payload(row))
        await commit_event(db, event_id)

    logger.debug(f"Draft saved {segment_id}/{candidate_id}/{judge_id} total={row.total}")
    await publish_event(entry, adapter)
    return row


async def lock_in(
    db: AsyncSession,
    segment_id: str,
    candidate_id: str,
    judge_id: str,
    adapter: Optional[BroadcastAdapter] = None
) -> JudgeScore:
    """
    Lock the judge's scorecard.

    Every criterion of the segment must have a recorded value. Locking an
    already-locked row keeps the first submission time and logs nothing.

    Raises:
        IncompleteScorecardError: With the ids of the criteria still missing
        NotFoundError: Unknown segment, candidate or judge
    """
    segment, criteria = await load_scoring_context(db, segment_id, candidate_id, judge_id)
    event_id = segment.event_id

    async with event_write_lock(event_id):
        row = await score_of(db, segment_id, candidate_id, judge_id)

        recorded = (row.criteria_scores or {}) if row is not None else {}
        missing = missing_criteria(recorded, criteria)
        if missing:
            raise IncompleteScorecardError(missing)

        if row is not None and row.locked:
            return row

        if row is None:
            # Only reachable for a segment without criteria
            row = JudgeScore(
                event_id=event_id,
                segment_id=segment_id,
                candidate_id=candidate_id,
                judge_id=judge_id,
                criteria_scores={},
                total=0.0,
            )
            db.add(row)

        row.locked = True
        row.submitted_at = utcnow()

        entry = await append_event(db, event_id, LiveEventType.SCORE_LOCKED, _score_payload(row))
        await commit_event(db, event_id)

    logger.info(f"Score locked {segment_id}/{candidate_id} by judge {judge_id}")
    await publish_event(entry, adapter)
    return row


async def unlock_score(
    db: AsyncSession,
    segment_id: str,
    candidate_id: str,
    judge_id: str
) -> Optional[JudgeScore]:
    """
    Clear the lock flag inside the caller's transaction.

    Only the operator's unlock-approval path calls this. Returns None when
    the row no longer exists.
    """
    row = await score_of(db, segment_id, candidate_id, judge_id)
    if row is None:
        return None
    row.locked = False
    return row
