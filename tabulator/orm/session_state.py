"""
Session state singleton, unlock requests and tie-breaker votes.

SessionState is the single row every role reads to know what is live.
Unlock requests and votes are separate rows so that concurrent judges only
ever touch their own keys.
"""
import enum

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum
)

from tabulator.orm.base import Base, new_id
from tabulator.core.db_types import UniversalJSON
from tabulator.core.timeutil import utcnow


class UnlockRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionState(Base):
    """
    Live session singleton (one per event).

    active_segment_id / active_candidate_id are deliberately not foreign keys:
    a stale id renders as "nothing found" in dependent views.
    """
    __tablename__ = "session_states"

    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    active_segment_id = Column(String(36), nullable=True)
    active_candidate_id = Column(String(36), nullable=True)
    is_paused = Column(Boolean, nullable=False, default=False)

    tie_breaker_active = Column(Boolean, nullable=False, default=False)
    tie_breaker_candidates = Column(UniversalJSON, nullable=True)

    # Bumped on every write; not used for conflict detection
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def bump(self) -> None:
        self.version = (self.version or 0) + 1


class UnlockRequest(Base):
    """A judge's appeal to reopen a locked scorecard. Resolved rows are kept for audit."""
    __tablename__ = "unlock_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    judge_id = Column(String(36), nullable=False)
    candidate_id = Column(String(36), nullable=False)
    segment_id = Column(String(36), nullable=False)
    status = Column(
        SQLEnum(UnlockRequestStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UnlockRequestStatus.PENDING
    )
    requested_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_unlock_event_status', 'event_id', 'status'),
        Index('idx_unlock_triple', 'segment_id', 'candidate_id', 'judge_id'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "judge_id": self.judge_id,
            "candidate_id": self.candidate_id,
            "segment_id": self.segment_id,
            "status": self.status.value if self.status else None,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


class TieBreakerVote(Base):
    """One vote per judge for the running tie-breaker round. Re-voting overwrites."""
    __tablename__ = "tie_breaker_votes"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    judge_id = Column(String(36), nullable=False)
    candidate_id = Column(String(36), nullable=False)
    cast_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('event_id', 'judge_id', name='uq_tie_vote_event_judge'),
    )
