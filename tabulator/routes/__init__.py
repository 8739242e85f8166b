"""
HTTP routers. All are mounted under /api/events/{event_id}.
"""
from fastapi import APIRouter

from tabulator.routes import control_room, results, scorecard

router = APIRouter()
router.include_router(scorecard.router)
router.include_router(control_room.router)
router.include_router(results.router)
