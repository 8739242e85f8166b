"""
Aggregation Engine.

Pure functions turning a segment's score ledger plus its criteria into
per-candidate composites, a competition-ranked leaderboard and tie groups.
No I/O and no database access: callers pass in a snapshot.

All calculations use Decimal, never float comparisons. Composites are
rounded to 2 decimal places (ROUND_HALF_UP) before ranking, so the 0.01
tolerance compares exactly what is displayed.
"""
import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

TWO_PLACES = Decimal("0.01")
TIE_TOLERANCE = Decimal("0.01")
ZERO = Decimal("0")


# =============================================================================
# Value types
# =============================================================================

@dataclass(frozen=True)
class CriterionDef:
    """A scored dimension. weight None or 0 means the raw score counts as-is."""
    id: str
    max_score: float
    weight: Optional[float] = None
    name: str = ""

    @property
    def is_weighted(self) -> bool:
        return bool(self.weight)


@dataclass(frozen=True)
class ScoreEnvelope:
    """Canonical shape of one judge's scorecard."""
    criteria_scores: Dict[str, float] = field(default_factory=dict)
    total: float = 0.0
    locked: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class ScoreRecord:
    """A ledger row as seen by the engine."""
    candidate_id: str
    judge_id: str
    envelope: ScoreEnvelope


@dataclass(frozen=True)
class CandidateRef:
    id: str
    number: int
    name: str = ""


@dataclass(frozen=True)
class LeaderboardEntry:
    candidate_id: str
    number: int
    name: str
    composite: Decimal
    rank: int
    judge_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "number": self.number,
            "name": self.name,
            "composite": float(self.composite),
            "rank": self.rank,
            "judge_count": self.judge_count,
        }


@dataclass(frozen=True)
class TieGroup:
    rank: int
    score: Decimal
    candidate_ids: List[str]

    @property
    def size(self) -> int:
        return len(self.candidate_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "score": float(self.score),
            "candidate_ids": list(self.candidate_ids),
        }


# =============================================================================
# Intake
# =============================================================================

def _to_number(value: Any) -> float:
    """Coerce a submitted value to a finite float. Anything else counts as 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def normalize_score(raw: Any) -> ScoreEnvelope:
    """
    Normalize any stored score shape to the canonical envelope.

    Accepted shapes:
    - a ScoreEnvelope (returned unchanged)
    - {"criteria_scores": {...}, "total": ..., "locked": ..., "notes": ...}
    - {"criteriaScores": {...}, ...} as written by older clients
    - a legacy flat map {criterion_id: value}

    Args:
        raw: Stored score in any of the shapes above, or None

    Returns:
        ScoreEnvelope with numeric criteria values
    """
    if isinstance(raw, ScoreEnvelope):
        return raw
    if not raw:
        return ScoreEnvelope()
    if not isinstance(raw, Mapping):
        return ScoreEnvelope()

    if "criteria_scores" in raw or "criteriaScores" in raw:
        scores = raw.get("criteria_scores")
        if scores is None:
            scores = raw.get("criteriaScores")
        scores = scores or {}
        criteria_scores = {str(k): _to_number(v) for k, v in scores.items()}
        return ScoreEnvelope(
            criteria_scores=criteria_scores,
            total=_to_number(raw.get("total", sum(criteria_scores.values()))),
            locked=bool(raw.get("locked", False)),
            notes=raw.get("notes"),
        )

    # Legacy flat map
    criteria_scores = {str(k): _to_number(v) for k, v in raw.items()}
    return ScoreEnvelope(criteria_scores=criteria_scores, total=sum(criteria_scores.values()))


def clamp_scores(raw_scores: Optional[Mapping[str, Any]], criteria: Sequence[CriterionDef]) -> Dict[str, float]:
    """
    Clamp submitted values to [0, max_score].

    Keys that are not criteria of the segment are dropped. Non-numeric
    values become 0.
    """
    if not raw_scores:
        return {}
    by_id = {c.id: c for c in criteria}
    clamped = {}
    for criterion_id, value in raw_scores.items():
        criterion = by_id.get(str(criterion_id))
        if criterion is None:
            continue
        number = _to_number(value)
        clamped[criterion.id] = min(max(number, 0.0), float(criterion.max_score))
    return clamped


def raw_total(criteria_scores: Mapping[str, float]) -> float:
    """Unweighted raw sum. Distinct from the weighted composite."""
    return float(sum(_to_number(v) for v in criteria_scores.values()))


def missing_criteria(criteria_scores: Mapping[str, Any], criteria: Sequence[CriterionDef]) -> List[str]:
    """Criterion ids with no recorded value, in criteria order."""
    return [
        c.id for c in criteria
        if c.id not in criteria_scores or criteria_scores[c.id] is None
    ]


# =============================================================================
# Composite
# =============================================================================

def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(_to_number(value)))
    except InvalidOperation:
        return ZERO


def judge_subtotal(criteria_scores: Mapping[str, Any], criteria: Sequence[CriterionDef]) -> Decimal:
    """
    One judge's subtotal for one candidate.

    Weighted criterion: raw / max_score * weight.
    Unweighted criterion: raw.
    """
    subtotal = ZERO
    for criterion in criteria:
        raw = _decimal(criteria_scores.get(criterion.id, 0))
        if criterion.is_weighted:
            max_score = _decimal(criterion.max_score)
            if max_score == ZERO:
                continue
            subtotal += raw / max_score * _decimal(criterion.weight)
        else:
            subtotal += raw
    return subtotal


def _scores_by_judge(candidate_id: str, segment_scores: Iterable[ScoreRecord]) -> Dict[str, ScoreEnvelope]:
    by_judge: Dict[str, ScoreEnvelope] = {}
    for record in segment_scores:
        if record.candidate_id == candidate_id:
            by_judge[record.judge_id] = normalize_score(record.envelope)
    return by_judge


def candidate_composite(
    candidate_id: str,
    segment_scores: Iterable[ScoreRecord],
    criteria: Sequence[CriterionDef]
) -> Decimal:
    """
    Average of judge subtotals across every judge with any entry for the
    candidate, locked or not. Zero judges yields 0.

    Returns:
        Composite rounded to 2 decimal places
    """
    by_judge = _scores_by_judge(candidate_id, segment_scores)
    if not by_judge:
        return ZERO.quantize(TWO_PLACES)

    total = sum(
        (judge_subtotal(envelope.criteria_scores, criteria) for envelope in by_judge.values()),
        ZERO
    )
    return (total / Decimal(len(by_judge))).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _is_tie(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) < tolerance


# =============================================================================
# Ranking
# =============================================================================

def leaderboard(
    candidates: Iterable[CandidateRef],
    segment_scores: Iterable[ScoreRecord],
    criteria: Sequence[CriterionDef],
    tolerance: Decimal = TIE_TOLERANCE
) -> List[LeaderboardEntry]:
    """
    Ranked leaderboard with competition ranking.

    Sort: composite DESC, candidate number ASC, candidate id ASC.
    rank(i) = rank(i-1) when the composites are within tolerance,
    otherwise i + 1. Scores [90, 90, 80] rank [1, 1, 3].
    """
    records = list(segment_scores)
    scored = []
    for candidate in candidates:
        by_judge = _scores_by_judge(candidate.id, records)
        scored.append((
            candidate,
            candidate_composite(candidate.id, records, criteria),
            len(by_judge),
        ))

    scored.sort(key=lambda item: (-item[1], item[0].number, item[0].id))

    entries: List[LeaderboardEntry] = []
    for i, (candidate, composite, judge_count) in enumerate(scored):
        if i > 0 and _is_tie(composite, entries[i - 1].composite, tolerance):
            rank = entries[i - 1].rank
        else:
            rank = i + 1
        entries.append(LeaderboardEntry(
            candidate_id=candidate.id,
            number=candidate.number,
            name=candidate.name,
            composite=composite,
            rank=rank,
            judge_count=judge_count,
        ))
    return entries


def detect_tie_groups(
    ranked: Sequence[LeaderboardEntry],
    tolerance: Decimal = TIE_TOLERANCE
) -> List[TieGroup]:
    """
    Cluster consecutive entries sharing a composite within tolerance.

    Linear scan over an already-sorted list; does not re-sort. Only groups
    with two or more members are returned, each tagged with the rank and
    score of its first member.
    """
    groups: List[TieGroup] = []
    current: List[LeaderboardEntry] = []

    def close_group():
        if len(current) >= 2:
            groups.append(TieGroup(
                rank=current[0].rank,
                score=current[0].composite,
                candidate_ids=[e.candidate_id for e in current],
            ))

    for entry in ranked:
        if current and _is_tie(entry.composite, current[-1].composite, tolerance):
            current.append(entry)
            continue
        close_group()
        current = [entry]
    close_group()

    return groups


# =============================================================================
# Tie-breaker tally
# =============================================================================

def tally_votes(votes: Mapping[str, str], candidate_ids: Sequence[str]) -> Dict[str, int]:
    """
    Count votes per tied candidate.

    votes maps judge_id -> candidate_id. Votes for candidates outside the
    round are ignored.
    """
    tally = {cid: 0 for cid in candidate_ids}
    for candidate_id in votes.values():
        if candidate_id in tally:
            tally[candidate_id] += 1
    return tally
