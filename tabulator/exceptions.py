"""
tabulator/exceptions.py
Typed exceptions raised by the tabulation services.

Every exception carries a machine-readable code and the HTTP status the API
layer answers with. All of them are local and recoverable: the initiating
actor fixes the input (or retries) and sends the command again.
"""
from typing import Any, Dict, List, Optional


class TabulationError(Exception):
    """Base exception for the tabulation engine."""
    status_code: int = 400
    code: str = "TABULATION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)


# =============================================================================
# Validation (400)
# =============================================================================

class IncompleteScorecardError(TabulationError):
    """
    Raised on lock-in when a criterion of the segment has no recorded value.
    """
    code = "INCOMPLETE_SCORECARD"

    def __init__(self, missing_criteria: List[str]):
        self.missing_criteria = list(missing_criteria)
        super().__init__(
            "Please score all criteria before submitting.",
            details={"missing_criteria": self.missing_criteria}
        )


class ScoreNotLockedError(TabulationError):
    """Raised when an unlock is requested for a scorecard that is not locked."""
    code = "SCORE_NOT_LOCKED"

    def __init__(self, segment_id: str, candidate_id: str, judge_id: str):
        super().__init__(
            "Only a locked scorecard can be unlocked.",
            details={"segment_id": segment_id, "candidate_id": candidate_id, "judge_id": judge_id}
        )


class SessionPreconditionError(TabulationError):
    """
    Raised when a session transition's precondition fails.

    Examples:
    - Starting the session with no segments
    - Starting the session with no candidates
    """
    code = "SESSION_PRECONDITION_FAILED"

    def __init__(self, message: str, precondition: str):
        self.precondition = precondition
        super().__init__(message, details={"precondition": precondition})


class TieBreakerError(TabulationError):
    """Raised for invalid tie-breaker commands."""
    code = "TIE_BREAKER_INVALID"


# =============================================================================
# Not found (404)
# =============================================================================

class NotFoundError(TabulationError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[str]):
        super().__init__(
            f"{resource} not found",
            details={"resource": resource, "id": resource_id}
        )


# =============================================================================
# Conflict (409)
# =============================================================================

class EventNotActiveError(TabulationError):
    """Raised when judges write scores while the event is not active."""
    status_code = 409
    code = "EVENT_NOT_ACTIVE"

    def __init__(self, event_id: str, status: str):
        super().__init__(
            f"Event is {status}; scores can only be submitted while it is active",
            details={"event_id": event_id, "status": status}
        )


class ConcurrentModificationError(TabulationError):
    """Raised when another worker appended the same event sequence first."""
    status_code = 409
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, event_id: str):
        super().__init__(
            "The event was modified concurrently; retry the action",
            details={"event_id": event_id}
        )
