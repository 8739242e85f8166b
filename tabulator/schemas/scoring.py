"""
Pydantic Schemas for the judge scorecard

Request and response models for drafts, lock-in, unlock requests and
tie-breaker votes.
"""
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ============================================================================
# Requests
# ============================================================================

class DraftScoreRequest(BaseModel):
    """Draft auto-save. Values are clamped server-side, never rejected."""
    criteria_scores: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("criteria_scores", "criteriaScores"),
        description="criterion_id -> raw score"
    )
    notes: Optional[str] = Field(None, max_length=5000, description="Omit to keep stored notes")


class TieVoteRequest(BaseModel):
    candidate_id: str = Field(..., min_length=1)


# ============================================================================
# Responses
# ============================================================================

class ScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    segment_id: str
    candidate_id: str
    judge_id: str
    criteria_scores: Dict[str, float]
    total: float
    locked: bool
    notes: Optional[str] = None
    submitted_at: Optional[str] = None


class DraftAcceptedResponse(BaseModel):
    success: bool = True
    segment_id: str
    candidate_id: str
    debounce_ms: int


class UnlockRequestResponse(BaseModel):
    id: str
    judge_id: str
    candidate_id: str
    segment_id: str
    status: str
    requested_at: Optional[str] = None
    resolved_at: Optional[str] = None


class TieVoteResponse(BaseModel):
    success: bool = True
    judge_id: str
    candidate_id: str


class JudgeMatrixRow(BaseModel):
    judge_id: str
    judge_name: str
    judge_status: str
    has_score: bool
    criteria_scores: Dict[str, float]
    raw_total: float
    weighted_subtotal: float
    locked: bool
    notes: Optional[str] = None
    submitted_at: Optional[str] = None


class JudgeMatrixResponse(BaseModel):
    segment_id: str
    candidate_id: str
    candidate_number: Optional[int] = None
    candidate_name: Optional[str] = None
    criteria: List[Dict[str, Any]] = Field(default_factory=list)
    judges: List[JudgeMatrixRow]
    composite: float
