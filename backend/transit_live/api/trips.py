"""Trip REST API endpoints."""

from fastapi import APIRouter, HTTPException

from transit_live.schemas.position import TripDetail, TripPosition, ViewUpdate

router = APIRouter(prefix="/api", tags=["trips"])

# Will be set by main.py
tracker = None


@router.get("/trips", response_model=list[TripPosition])
async def list_trips(product: str | None = None):
    """Get the current position of every tracked trip."""
    if tracker is None:
        return []
    positions = tracker.snapshot()
    if product:
        positions = [p for p in positions if p.product == product]
    return positions


@router.get("/trips/{trip_id}", response_model=TripDetail)
async def get_trip(trip_id: str):
    """Get a trip with its stops and route geometry."""
    detail = tracker.get_trip_detail(trip_id) if tracker else None
    if detail is None:
        raise HTTPException(status_code=404, detail="Trip not found")
    return detail


@router.post("/view")
async def update_view(view: ViewUpdate):
    """Tell the tracker where the map is centred; nearby trips are refreshed first."""
    if tracker is None:
        return {"error": "Tracker not initialized"}
    tracker.set_view(view.lat, view.lon)
    return {"status": "ok", "queued": len(tracker.requests)}
