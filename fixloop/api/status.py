"""
GET /status
Progress polling for the current loop run: phase, iteration, counters.
"""
from fastapi import APIRouter

from fixloop.api.run_tracker import tracker

router = APIRouter()


@router.get("/status")
async def get_status():
    if tracker.state is None:
        return {"running": tracker.running, "status": "idle", "error": tracker.error}
    return {"running": tracker.running, "error": tracker.error, **tracker.state}
