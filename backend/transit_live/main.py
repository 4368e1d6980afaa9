"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from transit_live.api import diagnostics, trips
from transit_live.config import settings
from transit_live.core.bvg_client import BvgClient
from transit_live.core.polyline_patches import PolylinePatches
from transit_live.core.request_scheduler import TIMER_LOGGER_NAME, RequestScheduler
from transit_live.core.scheduler import create_scheduler
from transit_live.core.trip_tracker import TripTracker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
# Skipped request ticks are expected while a detail request is slow
logging.getLogger(TIMER_LOGGER_NAME).setLevel(logging.ERROR)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    client = BvgClient(
        base_url=settings.bvg_base_url,
        operator_names=settings.operator_names,
        timeout=settings.http_timeout_seconds,
    )
    requests = RequestScheduler(settings.request_interval_ms)
    tracker = TripTracker(
        client,
        requests,
        patches=PolylinePatches.load(),
        origin_lat=settings.origin_lat,
        origin_lon=settings.origin_lon,
        finished_grace_seconds=settings.finished_grace_seconds,
        burst_interval_ms=settings.burst_interval_ms,
        burst_duration_ms=settings.burst_duration_ms,
        backoff_duration_ms=settings.backoff_duration_ms,
    )

    # Wire up API modules
    trips.tracker = tracker
    diagnostics.tracker = tracker

    # Initial listing; failures are logged and retried by the scheduler
    await tracker.fetch_new_trips()

    scheduler = create_scheduler(tracker)
    scheduler.start()
    logger.info(
        "Transit Live started - listing every %ds, one detail request every %dms",
        settings.trips_refresh_seconds, settings.request_interval_ms,
    )

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    requests.shutdown()
    await client.close()
    logger.info("Transit Live shut down")


app = FastAPI(
    title="Berlin Live Transit",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trips.router)
app.include_router(diagnostics.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
