"""
tabulator/rbac.py
Identity tuple and role checks.

Identity issuance (admin login, access-code redemption) is handled outside
this service. It hands clients a signed bearer token carrying the tuple
(role, event_id, sub); this module verifies the signature and trusts the
claims without any credential lookup.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from tabulator.config.settings import settings
from tabulator.errors import ErrorCode, error_content

logger = logging.getLogger(__name__)

# ================= ROLES =================

ROLE_ADMIN = "admin"
ROLE_JUDGE = "judge"
ROLE_COMMITTEE = "committee"

VALID_ROLES = {ROLE_ADMIN, ROLE_JUDGE, ROLE_COMMITTEE}

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The caller: role, event, and judge/member id (None for admin)."""
    role: str
    event_id: str
    subject_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def judge_id(self) -> Optional[str]:
        return self.subject_id if self.role == ROLE_JUDGE else None


# ================= TOKEN UTILS =================

def create_access_token(
    role: str,
    event_id: str,
    subject_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Sign an identity tuple. Used by the CLI and tests."""
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role: {role}")
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "role": role,
        "event_id": event_id,
        "exp": expire,
        "type": "access"
    }
    if subject_id:
        to_encode["sub"] = subject_id
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def actor_from_token(token: Optional[str]) -> Optional[Actor]:
    """Build an Actor from a raw token, or None when it is not a valid access token."""
    if not token:
        return None
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None

    role = payload.get("role")
    event_id = payload.get("event_id")
    if role not in VALID_ROLES or not event_id:
        return None

    subject_id = payload.get("sub")
    if role != ROLE_ADMIN and not subject_id:
        return None

    return Actor(role=role, event_id=event_id, subject_id=subject_id)


# ================= AUTH DEPENDENCIES =================

async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """
    Resolve the identity tuple from the bearer token.
    Returns 401 if the token is missing, invalid or expired.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_content("Unauthorized", "Missing bearer token", ErrorCode.AUTH_REQUIRED),
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = actor_from_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_content("Unauthorized", "Invalid or expired token", ErrorCode.AUTH_INVALID),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require_role(*allowed_roles: str):
    """
    Dependency factory: require one of the roles, scoped to the path's event.

    Usage: actor: Actor = Depends(require_role(ROLE_ADMIN))
    """
    async def dependency(
        request: Request,
        actor: Actor = Depends(get_current_actor),
    ) -> Actor:
        if actor.role not in allowed_roles:
            logger.warning(
                f"Access denied: {actor.role} {actor.subject_id or ''} "
                f"attempted {request.url.path} requiring {list(allowed_roles)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=error_content(
                    "Forbidden",
                    f"This action requires one of: {list(allowed_roles)}",
                    ErrorCode.FORBIDDEN,
                    {"current_role": actor.role}
                )
            )

        path_event_id = request.path_params.get("event_id")
        if path_event_id is not None and path_event_id != actor.event_id:
            logger.warning(f"Event mismatch: token for {actor.event_id} used on {path_event_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=error_content(
                    "Forbidden",
                    "Token was issued for a different event",
                    ErrorCode.EVENT_MISMATCH
                )
            )
        return actor

    return dependency


require_admin = require_role(ROLE_ADMIN)
require_judge = require_role(ROLE_JUDGE)
require_admin_or_committee = require_role(ROLE_ADMIN, ROLE_COMMITTEE)
require_any_role = require_role(ROLE_ADMIN, ROLE_JUDGE, ROLE_COMMITTEE)
