"""
Session Phase

The session row stores plain fields. The phase is derived from them so that
callers can match on an explicit variant instead of re-inferring it.

IDLE       no active segment or candidate
JUDGING    active segment and candidate set, no tie-breaker
TIE_BREAK  tie-breaker round running (judging the next candidate is not blocked)

Unlock requests are orthogonal to the phase and available in all of them.
"""
from enum import Enum
from typing import Any, Optional


class SessionPhase(str, Enum):
    IDLE = "idle"
    JUDGING = "judging"
    TIE_BREAK = "tie_break"


def derive_phase(state: Optional[Any]) -> SessionPhase:
    """
    Derive the phase from a SessionState row or an equivalent object.

    A missing row is IDLE.
    """
    if state is None:
        return SessionPhase.IDLE
    if getattr(state, "tie_breaker_active", False):
        return SessionPhase.TIE_BREAK
    if getattr(state, "active_segment_id", None) and getattr(state, "active_candidate_id", None):
        return SessionPhase.JUDGING
    return SessionPhase.IDLE
