"""
Score Ledger row.

One row per (segment, candidate, judge). The judge id is part of the row's
identity, which is what makes the owning judge the only writer.
"""
from sqlalchemy import (
    Column, String, Float, Boolean, DateTime, ForeignKey, Text,
    UniqueConstraint, Index
)

from tabulator.orm.base import Base, new_id
from tabulator.core.db_types import UniversalJSON
from tabulator.core.timeutil import utcnow


class JudgeScore(Base):
    """
    A judge's scorecard for one candidate in one segment.

    `total` is the unweighted raw sum of `criteria_scores`. It is used only as
    a "has this judge started" indicator and intentionally differs from the
    weighted composite used for ranking.
    """
    __tablename__ = "judge_scores"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_id = Column(String(36), ForeignKey("segments.id", ondelete="CASCADE"), nullable=False)
    candidate_id = Column(String(36), ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False)
    judge_id = Column(String(36), ForeignKey("judges.id", ondelete="CASCADE"), nullable=False)

    criteria_scores = Column(UniversalJSON, nullable=False, default=dict)
    total = Column(Float, nullable=False, default=0.0)
    locked = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('segment_id', 'candidate_id', 'judge_id', name='uq_score_segment_candidate_judge'),
        Index('idx_scores_segment', 'segment_id'),
        Index('idx_scores_segment_candidate', 'segment_id', 'candidate_id'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "segment_id": self.segment_id,
            "candidate_id": self.candidate_id,
            "judge_id": self.judge_id,
            "criteria_scores": dict(self.criteria_scores or {}),
            "total": self.total,
            "locked": bool(self.locked),
            "notes": self.notes,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
