"""
Pydantic Schemas for the control room and read model
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Operator requests
# ============================================================================

class ActiveSegmentRequest(BaseModel):
    segment_id: Optional[str] = Field(None, description="None clears the active segment")


class ActiveCandidateRequest(BaseModel):
    candidate_id: Optional[str] = Field(None, description="None clears the active candidate")


class PauseRequest(BaseModel):
    paused: bool


class ResolveUnlockRequest(BaseModel):
    approve: bool


class StartTieBreakerRequest(BaseModel):
    candidate_ids: List[str] = Field(..., description="Tied candidates, at least two")


# ============================================================================
# Read model
# ============================================================================

class TieBreakerView(BaseModel):
    active: bool
    candidate_ids: List[str]


class PendingUnlockView(BaseModel):
    id: str
    judge_id: str
    candidate_id: str
    segment_id: str
    status: str
    requested_at: Optional[str] = None
    resolved_at: Optional[str] = None


class SessionStateResponse(BaseModel):
    event_id: str
    sequence: int
    active_segment_id: Optional[str] = None
    active_candidate_id: Optional[str] = None
    is_paused: bool = False
    phase: str
    tie_breaker: Optional[TieBreakerView] = None
    pending_unlock_requests: List[PendingUnlockView] = Field(default_factory=list)
    version: int = 0


class LeaderboardRow(BaseModel):
    candidate_id: str
    number: int
    name: str
    composite: float
    rank: int
    judge_count: int


class LeaderboardResponse(BaseModel):
    event_id: str
    segment_id: str
    sequence: int
    entries: List[LeaderboardRow]


class TieGroupRow(BaseModel):
    rank: int
    score: float
    candidate_ids: List[str]


class TieGroupsResponse(BaseModel):
    event_id: str
    segment_id: str
    sequence: int
    groups: List[TieGroupRow]


class TieTallyResponse(BaseModel):
    active: bool
    tally: Dict[str, int]


class TieBreakerEndResponse(BaseModel):
    success: bool = True
    final_tally: Dict[str, int]
