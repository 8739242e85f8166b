"""
Read model routes.

Every response is a projection of a freshly loaded snapshot and carries the
log sequence it reflects. Unknown ids return empty results.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from tabulator.database import get_db
from tabulator.rbac import Actor, require_admin, require_admin_or_committee, require_any_role
from tabulator.schemas.scoring import JudgeMatrixResponse
from tabulator.schemas.session import (
    LeaderboardResponse, SessionStateResponse, TieGroupsResponse, TieTallyResponse
)
from tabulator.services import read_model_service
from tabulator.services.export_service import export_filename, export_leaderboard_csv
from tabulator.services.live_event_service import verify_event_chain

router = APIRouter(prefix="/api/events/{event_id}", tags=["Results"])


@router.get("/session", response_model=SessionStateResponse)
async def get_session_state(
    event_id: str,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    view = read_model_service.session_view(snapshot).to_dict()
    return {"event_id": event_id, "sequence": snapshot.sequence, **view}


@router.get("/segments/{segment_id}/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    event_id: str,
    segment_id: str,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    entries = read_model_service.leaderboard_for(snapshot, segment_id)
    return {
        "event_id": event_id,
        "segment_id": segment_id,
        "sequence": snapshot.sequence,
        "entries": [e.to_dict() for e in entries],
    }


@router.get("/segments/{segment_id}/tie-groups", response_model=TieGroupsResponse)
async def get_tie_groups(
    event_id: str,
    segment_id: str,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    groups = read_model_service.tie_groups_for(snapshot, segment_id)
    return {
        "event_id": event_id,
        "segment_id": segment_id,
        "sequence": snapshot.sequence,
        "groups": [g.to_dict() for g in groups],
    }


@router.get(
    "/segments/{segment_id}/candidates/{candidate_id}/scores",
    response_model=JudgeMatrixResponse
)
async def get_judge_matrix(
    event_id: str,
    segment_id: str,
    candidate_id: str,
    actor: Actor = Depends(require_admin_or_committee),
    db: AsyncSession = Depends(get_db)
):
    """Committee review: each judge's scorecard for one candidate."""
    snapshot = await read_model_service.load_snapshot(db, event_id)
    return read_model_service.judge_matrix_for(snapshot, segment_id, candidate_id)


@router.get("/segments/{segment_id}/progress")
async def get_progress_grid(
    event_id: str,
    segment_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    return {
        "segment_id": segment_id,
        "sequence": snapshot.sequence,
        "candidates": read_model_service.progress_grid_for(snapshot, segment_id),
    }


@router.get("/tie-breaker/tally", response_model=TieTallyResponse)
async def get_tie_tally(
    event_id: str,
    actor: Actor = Depends(require_admin_or_committee),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    return {
        "active": snapshot.session.tie_breaker_active,
        "tally": read_model_service.tie_tally(snapshot),
    }


@router.get("/segments/{segment_id}/leaderboard.csv")
async def export_leaderboard(
    event_id: str,
    segment_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    snapshot = await read_model_service.load_snapshot(db, event_id)
    content = export_leaderboard_csv(read_model_service.leaderboard_for(snapshot, segment_id))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(segment_id)}"'}
    )


@router.get("/event-log/verify")
async def verify_event_log(
    event_id: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Recompute the live event hash chain."""
    return await verify_event_chain(event_id, db)
