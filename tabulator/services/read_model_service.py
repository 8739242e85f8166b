"""
Read model.

`load_snapshot` reads everything a client needs for one event into an
immutable EventSnapshot. Every other function here is a pure projection of
a snapshot, so any role can recompute leaderboard, tie groups, session view
or the committee matrix locally after each change notification.

Stale or unknown ids project to empty results, never errors.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tabulator.config.settings import settings
from tabulator.orm.event import Candidate, Event, Judge, Segment
from tabulator.orm.score import JudgeScore
from tabulator.orm.session_state import SessionState, TieBreakerVote, UnlockRequest, UnlockRequestStatus
from tabulator.services.aggregation_engine import (
    CandidateRef, CriterionDef, LeaderboardEntry, ScoreRecord, TieGroup,
    candidate_composite, detect_tie_groups, judge_subtotal, leaderboard, raw_total, tally_votes
)
from tabulator.services.live_event_service import get_latest_sequence
from tabulator.services.score_ledger_service import to_criterion_def, to_score_record
from tabulator.state_machines.session_phase import SessionPhase, derive_phase

logger = logging.getLogger(__name__)

ScoreKey = Tuple[str, str, str]


# =============================================================================
# Snapshot types
# =============================================================================

@dataclass(frozen=True)
class SegmentView:
    id: str
    name: str
    display_order: int
    weight: float
    status: str
    criteria: Tuple[CriterionDef, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_order": self.display_order,
            "weight": self.weight,
            "status": self.status,
            "criteria": [
                {"id": c.id, "name": c.name, "max_score": c.max_score, "weight": c.weight}
                for c in self.criteria
            ],
        }


@dataclass(frozen=True)
class JudgeView:
    id: str
    name: str
    status: str


@dataclass(frozen=True)
class SessionView:
    active_segment_id: Optional[str] = None
    active_candidate_id: Optional[str] = None
    is_paused: bool = False
    phase: SessionPhase = SessionPhase.IDLE
    tie_breaker_active: bool = False
    tie_breaker_candidates: Tuple[str, ...] = ()
    pending_unlock_requests: Tuple[Dict[str, Any], ...] = ()
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        tie_breaker = None
        if self.tie_breaker_active:
            tie_breaker = {"active": True, "candidate_ids": list(self.tie_breaker_candidates)}
        return {
            "active_segment_id": self.active_segment_id,
            "active_candidate_id": self.active_candidate_id,
            "is_paused": self.is_paused,
            "phase": self.phase.value,
            "tie_breaker": tie_breaker,
            "pending_unlock_requests": [dict(r) for r in self.pending_unlock_requests],
            "version": self.version,
        }


@dataclass(frozen=True)
class EventSnapshot:
    """Everything observable about one event at one log sequence."""
    event_id: str
    sequence: int = 0
    event_name: Optional[str] = None
    event_status: Optional[str] = None
    segments: Dict[str, SegmentView] = field(default_factory=dict)
    candidates: Tuple[CandidateRef, ...] = ()
    judges: Tuple[JudgeView, ...] = ()
    scores: Dict[ScoreKey, Dict[str, Any]] = field(default_factory=dict)
    session: SessionView = field(default_factory=SessionView)
    tie_votes: Dict[str, str] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return self.event_name is not None

    def segment_records(self, segment_id: str) -> List[ScoreRecord]:
        return [
            ScoreRecord(candidate_id=key[1], judge_id=key[2], envelope=row["envelope"])
            for key, row in self.scores.items()
            if key[0] == segment_id
        ]


# =============================================================================
# Loading
# =============================================================================

async def load_snapshot(db: AsyncSession, event_id: str) -> EventSnapshot:
    """
    Read the current state of an event.

    The sequence is read first, so the data is never older than the
    sequence it is tagged with.
    """
    sequence = await get_latest_sequence(event_id, db)

    event = await db.get(Event, event_id, populate_existing=True)
    if event is None:
        return EventSnapshot(event_id=event_id, sequence=sequence)

    segment_result = await db.execute(
        select(Segment)
        .options(selectinload(Segment.criteria))
        .where(Segment.event_id == event_id)
        .order_by(Segment.display_order.asc(), Segment.name.asc())
    )
    segments = {
        s.id: SegmentView(
            id=s.id,
            name=s.name,
            display_order=s.display_order,
            weight=s.weight,
            status=s.status.value if s.status else "pending",
            criteria=tuple(to_criterion_def(c) for c in s.criteria),
        )
        for s in segment_result.scalars().all()
    }

    candidate_result = await db.execute(
        select(Candidate).where(Candidate.event_id == event_id).order_by(Candidate.number.asc())
    )
    candidates = tuple(
        CandidateRef(id=c.id, number=c.number, name=c.name)
        for c in candidate_result.scalars().all()
    )

    judge_result = await db.execute(
        select(Judge).where(Judge.event_id == event_id).order_by(Judge.name.asc())
    )
    judges = tuple(
        JudgeView(id=j.id, name=j.name, status=j.status or "offline")
        for j in judge_result.scalars().all()
    )

    score_result = await db.execute(
        select(JudgeScore)
        .where(JudgeScore.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    scores: Dict[ScoreKey, Dict[str, Any]] = {}
    for row in score_result.scalars().all():
        data = row.to_dict()
        data["envelope"] = to_score_record(row).envelope
        scores[(row.segment_id, row.candidate_id, row.judge_id)] = data

    session = SessionView()
    tie_votes: Dict[str, str] = {}
    state = await db.get(SessionState, event_id, populate_existing=True)
    if state is not None:
        pending_result = await db.execute(
            select(UnlockRequest)
            .where(
                UnlockRequest.event_id == event_id,
                UnlockRequest.status == UnlockRequestStatus.PENDING
            )
            .order_by(UnlockRequest.requested_at.asc())
            .execution_options(populate_existing=True)
        )
        session = SessionView(
            active_segment_id=state.active_segment_id,
            active_candidate_id=state.active_candidate_id,
            is_paused=bool(state.is_paused),
            phase=derive_phase(state),
            tie_breaker_active=bool(state.tie_breaker_active),
            tie_breaker_candidates=tuple(state.tie_breaker_candidates or ()),
            pending_unlock_requests=tuple(r.to_dict() for r in pending_result.scalars().all()),
            version=state.version or 0,
        )
        if state.tie_breaker_active:
            vote_result = await db.execute(
                select(TieBreakerVote).where(TieBreakerVote.event_id == event_id)
                .execution_options(populate_existing=True)
            )
            tie_votes = {v.judge_id: v.candidate_id for v in vote_result.scalars().all()}

    return EventSnapshot(
        event_id=event_id,
        sequence=sequence,
        event_name=event.name,
        event_status=event.status.value if event.status else None,
        segments=segments,
        candidates=candidates,
        judges=judges,
        scores=scores,
        session=session,
        tie_votes=tie_votes,
    )


# =============================================================================
# Projections
# =============================================================================

def leaderboard_for(
    snapshot: EventSnapshot,
    segment_id: Optional[str],
    tolerance: Decimal = settings.TIE_TOLERANCE
) -> List[LeaderboardEntry]:
    segment = snapshot.segments.get(segment_id) if segment_id else None
    if segment is None:
        return []
    return leaderboard(
        snapshot.candidates,
        snapshot.segment_records(segment.id),
        segment.criteria,
        tolerance=tolerance,
    )


def tie_groups_for(
    snapshot: EventSnapshot,
    segment_id: Optional[str],
    tolerance: Decimal = settings.TIE_TOLERANCE
) -> List[TieGroup]:
    return detect_tie_groups(leaderboard_for(snapshot, segment_id, tolerance), tolerance)


def session_view(snapshot: EventSnapshot) -> SessionView:
    return snapshot.session


def score_of_snapshot(
    snapshot: EventSnapshot,
    segment_id: str,
    candidate_id: str,
    judge_id: str
) -> Optional[Dict[str, Any]]:
    row = snapshot.scores.get((segment_id, candidate_id, judge_id))
    if row is None:
        return None
    return {k: v for k, v in row.items() if k != "envelope"}


def judge_matrix_for(
    snapshot: EventSnapshot,
    segment_id: str,
    candidate_id: str
) -> Dict[str, Any]:
    """
    Committee view: every judge's scorecard for one candidate.

    Judges without a scorecard appear with has_score False. The composite
    averages only judges with an entry.
    """
    segment = snapshot.segments.get(segment_id)
    candidate = next((c for c in snapshot.candidates if c.id == candidate_id), None)
    if segment is None or candidate is None:
        return {"segment_id": segment_id, "candidate_id": candidate_id, "judges": [], "composite": 0.0}

    judges = []
    for judge in snapshot.judges:
        row = snapshot.scores.get((segment_id, candidate_id, judge.id))
        if row is None:
            judges.append({
                "judge_id": judge.id,
                "judge_name": judge.name,
                "judge_status": judge.status,
                "has_score": False,
                "criteria_scores": {},
                "raw_total": 0.0,
                "weighted_subtotal": 0.0,
                "locked": False,
                "notes": None,
                "submitted_at": None,
            })
            continue
        criteria_scores = row["envelope"].criteria_scores
        judges.append({
            "judge_id": judge.id,
            "judge_name": judge.name,
            "judge_status": judge.status,
            "has_score": True,
            "criteria_scores": dict(criteria_scores),
            "raw_total": raw_total(criteria_scores),
            "weighted_subtotal": float(judge_subtotal(criteria_scores, segment.criteria).quantize(Decimal("0.01"))),
            "locked": bool(row["locked"]),
            "notes": row["notes"],
            "submitted_at": row["submitted_at"],
        })

    composite = candidate_composite(candidate_id, snapshot.segment_records(segment_id), segment.criteria)
    return {
        "segment_id": segment_id,
        "candidate_id": candidate_id,
        "candidate_number": candidate.number,
        "candidate_name": candidate.name,
        "criteria": segment.to_dict()["criteria"],
        "judges": judges,
        "composite": float(composite),
    }


def progress_grid_for(snapshot: EventSnapshot, segment_id: str) -> List[Dict[str, Any]]:
    """
    Operator grid: per candidate, each judge's state in the segment.

    States: "locked", "draft" (has an unlocked entry), "pending" (nothing yet).
    """
    if segment_id not in snapshot.segments:
        return []
    grid = []
    for candidate in snapshot.candidates:
        cells = {}
        for judge in snapshot.judges:
            row = snapshot.scores.get((segment_id, candidate.id, judge.id))
            if row is None:
                cells[judge.id] = "pending"
            elif row["locked"]:
                cells[judge.id] = "locked"
            else:
                cells[judge.id] = "draft"
        grid.append({"candidate_id": candidate.id, "number": candidate.number, "judges": cells})
    return grid


def tie_tally(snapshot: EventSnapshot) -> Dict[str, int]:
    if not snapshot.session.tie_breaker_active:
        return {}
    return tally_votes(snapshot.tie_votes, snapshot.session.tie_breaker_candidates)
