"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(tracker) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from transit_live.config import settings

    scheduler = AsyncIOScheduler()

    # Pick up new trips from the listing every N seconds
    scheduler.add_job(
        tracker.fetch_new_trips,
        "interval",
        seconds=settings.trips_refresh_seconds,
        id="fetch_new_trips",
        name="Fetch trip listing from BVG",
        max_instances=1,
    )

    # Re-rank pending detail requests every N seconds
    scheduler.add_job(
        tracker.reorder_requests,
        "interval",
        seconds=settings.reprioritize_seconds,
        id="update_request_order",
        name="Reorder trip detail requests",
        max_instances=1,
    )

    # Drop trips that have reached their destination
    scheduler.add_job(
        tracker.retire_finished_trips,
        "interval",
        seconds=settings.retire_interval_seconds,
        id="retire_finished",
        name="Retire finished trips",
        max_instances=1,
    )

    return scheduler
