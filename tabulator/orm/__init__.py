from .base import Base

# Roster & configuration (owned by external editors, read-only here)
from .event import Event, EventStatus, Segment, SegmentStatus, Criterion, Candidate, Judge, CommitteeMember

# Score ledger
from .score import JudgeScore

# Session state, unlock workflow, tie-breaker
from .session_state import SessionState, UnlockRequest, UnlockRequestStatus, TieBreakerVote

# Live event log
from .live_event_log import LiveEventLog

__all__ = [
    "Base",
    "Event", "EventStatus", "Segment", "SegmentStatus", "Criterion", "Candidate", "Judge", "CommitteeMember",
    "JudgeScore",
    "SessionState", "UnlockRequest", "UnlockRequestStatus", "TieBreakerVote",
    "LiveEventLog",
]
