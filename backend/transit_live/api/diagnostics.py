"""Diagnostics API for the request queue and position engine."""

from fastapi import APIRouter

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])

# Will be set by main.py
tracker = None


@router.get("")
async def get_diagnostics():
    """Get tracker diagnostics: trip counts, request queue state."""
    if tracker is None:
        return {"error": "Tracker not initialized"}
    return tracker.get_diagnostics()


@router.get("/requests")
async def get_request_queue(limit: int = 50):
    """Get the next pending detail requests in execution order."""
    if tracker is None:
        return {"error": "Tracker not initialized"}
    pending = tracker.requests.pending_trip_ids()
    return {
        **tracker.requests.state(),
        "next_trip_ids": pending[: max(0, min(limit, 500))],
    }


@router.get("/positions")
async def get_position_diagnostics(limit: int = 100):
    """Get recent position anomalies (failed interpolation, unusable details)."""
    if tracker is None:
        return {"error": "Tracker not initialized"}
    return tracker.get_position_diagnostics(limit=limit)
