"""
Event roster and configuration models.

Events, segments, criteria, candidates, judges and committee members are
created by the roster/segment editors. The tabulation core only reads them.
"""
import enum

from sqlalchemy import (
    Column, String, Integer, Float, Date, DateTime, ForeignKey, Text,
    UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from tabulator.orm.base import Base, new_id
from tabulator.core.timeutil import utcnow


# =============================================================================
# Enums
# =============================================================================

class EventStatus(str, enum.Enum):
    """Lifecycle: setup → active → completed."""
    SETUP = "setup"
    ACTIVE = "active"
    COMPLETED = "completed"


class SegmentStatus(str, enum.Enum):
    """Display-only segment progress marker."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


# =============================================================================
# Models
# =============================================================================

class Event(Base):
    """A judged competition. Owns the roster, session state and score ledger."""
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    status = Column(
        SQLEnum(EventStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EventStatus.SETUP
    )
    event_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    segments = relationship("Segment", back_populates="event", cascade="all, delete-orphan")
    candidates = relationship("Candidate", back_populates="event", cascade="all, delete-orphan")
    judges = relationship("Judge", back_populates="event", cascade="all, delete-orphan")
    committee_members = relationship("CommitteeMember", back_populates="event", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value if self.status else None,
            "event_date": self.event_date.isoformat() if self.event_date else None,
        }


class Segment(Base):
    """
    A judged phase of the competition with its own criteria.

    Criterion weights are expected to sum to 100 and segment weights across
    the event likewise; neither is validated here.
    """
    __tablename__ = "segments"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    weight = Column(Float, nullable=False, default=0.0)
    status = Column(
        SQLEnum(SegmentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SegmentStatus.PENDING
    )

    event = relationship("Event", back_populates="segments")
    criteria = relationship(
        "Criterion",
        back_populates="segment",
        cascade="all, delete-orphan",
        order_by="Criterion.display_order"
    )

    __table_args__ = (
        Index('idx_segments_event_order', 'event_id', 'display_order'),
    )


class Criterion(Base):
    """A scored dimension within a segment. Weight absent or zero means simple point sum."""
    __tablename__ = "criteria"

    id = Column(String(36), primary_key=True, default=new_id)
    segment_id = Column(String(36), ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    max_score = Column(Float, nullable=False)
    weight = Column(Float, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)

    segment = relationship("Segment", back_populates="criteria")


class Candidate(Base):
    """A contestant. `number` is the stable human-facing identifier."""
    __tablename__ = "candidates"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    name = Column(String(200), nullable=False)
    photo_url = Column(String(500), nullable=True)
    details = Column(Text, nullable=True)

    event = relationship("Event", back_populates="candidates")

    __table_args__ = (
        UniqueConstraint('event_id', 'number', name='uq_candidate_event_number'),
    )


class Judge(Base):
    __tablename__ = "judges"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    access_code = Column(String(64), nullable=True)
    # Presence, written by the external presence tracker; display only
    status = Column(String(16), nullable=False, default="offline")
    last_seen_at = Column(DateTime, nullable=True)

    event = relationship("Event", back_populates="judges")


class CommitteeMember(Base):
    __tablename__ = "committee_members"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    access_code = Column(String(64), nullable=True)

    event = relationship("Event", back_populates="committee_members")
