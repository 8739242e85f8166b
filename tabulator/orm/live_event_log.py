"""
Append-only live event log.

Every committed mutation of the score ledger or session state appends one
entry. The per-event sequence number is the snapshot version subscribers use
to skip stale notifications, and the hash chain makes the log tamper-evident.
"""
import hashlib
import json
from datetime import datetime
from typing import Dict, Any

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index
)

from tabulator.orm.base import Base
from tabulator.core.db_types import UniversalJSON
from tabulator.core.timeutil import utcnow

GENESIS_HASH = "0" * 64


class LiveEventType:
    """Event type names carried in the log and on the wire."""
    SCORE_DRAFT_SAVED = "SCORE_DRAFT_SAVED"
    SCORE_LOCKED = "SCORE_LOCKED"
    SESSION_STARTED = "SESSION_STARTED"
    ACTIVE_SEGMENT_CHANGED = "ACTIVE_SEGMENT_CHANGED"
    ACTIVE_CANDIDATE_CHANGED = "ACTIVE_CANDIDATE_CHANGED"
    SESSION_PAUSE_CHANGED = "SESSION_PAUSE_CHANGED"
    UNLOCK_REQUESTED = "UNLOCK_REQUESTED"
    UNLOCK_RESOLVED = "UNLOCK_RESOLVED"
    TIE_BREAKER_STARTED = "TIE_BREAKER_STARTED"
    TIE_VOTE_CAST = "TIE_VOTE_CAST"
    TIE_BREAKER_ENDED = "TIE_BREAKER_ENDED"


class LiveEventLog(Base):
    __tablename__ = "live_event_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False
    )
    event_sequence = Column(Integer, nullable=False)
    event_type = Column(String(40), nullable=False)
    event_payload_json = Column(UniversalJSON, nullable=False, default=dict)
    previous_hash = Column(String(64), nullable=False)
    event_hash = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('event_id', 'event_sequence', name='uq_live_event_seq'),
        Index('idx_live_event_event_seq', 'event_id', 'event_sequence'),
    )

    @classmethod
    def compute_event_hash(
        cls,
        previous_hash: str,
        event_sequence: int,
        event_type: str,
        payload: Dict[str, Any],
        created_at: datetime
    ) -> str:
        """
        Compute deterministic SHA256 hash for event chain.

        Formula:
        SHA256(previous_hash + event_sequence + event_type + sorted_json(payload) + created_at_iso)
        """
        payload_json = json.dumps(payload, sort_keys=True)
        combined = (
            str(previous_hash) +
            str(event_sequence) +
            event_type +
            payload_json +
            created_at.isoformat()
        )
        return hashlib.sha256(combined.encode()).hexdigest()

    def verify_hash(self) -> bool:
        """Verify stored hash matches computed hash."""
        computed = self.compute_event_hash(
            previous_hash=self.previous_hash,
            event_sequence=self.event_sequence,
            event_type=self.event_type,
            payload=self.event_payload_json,
            created_at=self.created_at
        )
        return computed == self.event_hash

    def to_message(self) -> Dict[str, Any]:
        """Wire message published to subscribers."""
        return {
            "type": "EVENT",
            "event_id": self.event_id,
            "event_sequence": self.event_sequence,
            "event_hash": self.event_hash,
            "event_type": self.event_type,
            "payload": self.event_payload_json,
        }
