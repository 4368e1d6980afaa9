"""Main orchestrator: keeps the trip index, orders detail requests, serves positions."""

import datetime
import logging
from collections import deque

from pydantic import ValidationError

from transit_live.core.bvg_client import BvgClient, UpstreamError, UpstreamUnavailable
from transit_live.core.geo import ORIGIN_LAT, ORIGIN_LON, GeoPoint, PlanarPoint, distance, to_geo, to_planar
from transit_live.core.polyline_patches import PolylinePatches
from transit_live.core.request_scheduler import (
    DEFAULT_BACKOFF_DURATION_MS,
    DEFAULT_BURST_DURATION_MS,
    DEFAULT_BURST_INTERVAL_MS,
    RequestScheduler,
    ScheduledJob,
)
from transit_live.core.trip import Trip, TripDataError, TripStateError
from transit_live.schemas.position import TripDetail, TripPosition, TripStopInfo
from transit_live.schemas.trip import DetailedTrip, NotModified, PreliminaryTrip, parse_trip_payload

logger = logging.getLogger(__name__)

# Request priority: lower runs first. Base is metres from the view centre;
# detailed trips are pushed back and then drift forward as their data ages.
DETAILED_PRIORITY_PENALTY = 5000.0
PRIORITY_PER_AGE_SECOND = 50.0
MIN_REFRESH_AGE_SECONDS = 1.0


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TripTracker:
    """Orchestrates listing polls, detail requests and position snapshots."""

    def __init__(
        self,
        client: BvgClient,
        requests: RequestScheduler,
        patches: PolylinePatches | None = None,
        origin_lat: float = ORIGIN_LAT,
        origin_lon: float = ORIGIN_LON,
        finished_grace_seconds: float = 15.0,
        burst_interval_ms: int = DEFAULT_BURST_INTERVAL_MS,
        burst_duration_ms: int = DEFAULT_BURST_DURATION_MS,
        backoff_duration_ms: int = DEFAULT_BACKOFF_DURATION_MS,
    ) -> None:
        self.client = client
        self.requests = requests
        self.patches = patches or PolylinePatches.empty()
        self.origin = (origin_lat, origin_lon)
        self.finished_grace_seconds = finished_grace_seconds
        self.burst_interval_ms = burst_interval_ms
        self.burst_duration_ms = burst_duration_ms
        self.backoff_duration_ms = backoff_duration_ms

        # trip id -> Trip
        self.trips: dict[str, Trip] = {}

        # Centre of the client's map view; requests near it go first
        self.view_center = GeoPoint(origin_lat, origin_lon)

        self._position_events: deque[dict] = deque(maxlen=500)
        self._retired_count = 0

    # --- listing --------------------------------------------------------

    async def fetch_new_trips(self) -> None:
        """Poll cycle: add unseen trips from the listing and queue their details."""
        try:
            raw_trips = await self.client.fetch_all_trips()
            added = sum(1 for raw in raw_trips if self.add_preliminary(raw) is not None)

            logger.info("Tracking %d trips (%d new)", len(self.trips), added)
            self.update_request_order()
        except Exception:
            logger.exception("Error in trip listing poll cycle")

    def add_preliminary(self, raw: dict) -> Trip | None:
        """Start tracking a listing entry; None if invalid or already tracked."""
        try:
            payload = parse_trip_payload(raw)
        except ValidationError as e:
            logger.debug("Skipping malformed trip record: %s", e)
            return None
        if payload.id in self.trips:
            return None
        trip = Trip(payload, self.patches, *self.origin)
        self.trips[trip.id] = trip
        return trip

    # --- request ordering ------------------------------------------------

    @staticmethod
    def _position_for_priority(trip: Trip) -> PlanarPoint | None:
        point = trip.last_position
        if point is None and trip.stops:
            point = trip.stops[0].point
        return point

    def update_request_order(self, now: datetime.datetime | None = None) -> None:
        """Replace the request queue with all trips ordered by priority."""
        now = now or _utcnow()
        center = to_planar(self.view_center.lat, self.view_center.lon, *self.origin)
        ranked: list[tuple[float, str]] = []
        for trip_id, trip in self.trips.items():
            point = self._position_for_priority(trip)
            priority = distance(center, point) if point is not None else float("inf")
            if trip.is_detailed:
                age = (now - trip.details_timestamp).total_seconds()
                if age < MIN_REFRESH_AGE_SECONDS:
                    continue
                priority += DETAILED_PRIORITY_PENALTY - PRIORITY_PER_AGE_SECOND * age
            ranked.append((priority, trip_id))

        ranked.sort(key=lambda item: item[0])
        self.requests.replace_queue(self._detail_job(trip_id) for _, trip_id in ranked)
        logger.debug("Reordered %d detail requests", len(ranked))

    async def reorder_requests(self) -> None:
        """Periodic re-ranking; runs on the event loop like the request queue."""
        try:
            self.update_request_order()
        except Exception:
            logger.exception("Error reordering detail requests")

    def set_view(self, lat: float, lon: float) -> None:
        """Client moved the map: reprioritise and speed up for a while."""
        self.view_center = GeoPoint(lat, lon)
        self.update_request_order()
        self.requests.burst(self.burst_interval_ms, self.burst_duration_ms)

    # --- detail requests -------------------------------------------------

    def _detail_job(self, trip_id: str) -> ScheduledJob:
        async def run() -> None:
            try:
                result = await self.client.fetch_trip_details(trip_id)
            except UpstreamUnavailable as e:
                logger.warning("Details for %s unavailable (%s), backing off", trip_id, e)
                self.requests.backoff(self.backoff_duration_ms)
                self.requests.enqueue(job)
                return
            except UpstreamError as e:
                logger.warning("Details for %s failed: %s", trip_id, e)
                return
            self.on_detailed_data(trip_id, result)

        job = ScheduledJob(trip_id=trip_id, run=run)
        return job

    def on_detailed_data(
        self,
        trip_id: str,
        result: dict | DetailedTrip | NotModified,
        now: datetime.datetime | None = None,
    ) -> Trip | None:
        """Apply a detail response to the trip it was requested for."""
        trip = self.trips.get(trip_id)
        if trip is None:
            logger.debug("Discarding details for untracked trip %s", trip_id)
            self.client.forget(trip_id)
            return None

        if isinstance(result, NotModified):
            trip.touch(now)
            return trip

        if isinstance(result, dict):
            try:
                payload = parse_trip_payload(result)
            except ValidationError as e:
                logger.warning("Malformed details for trip %s: %s", trip_id, e)
                return None
        else:
            payload = result

        if payload.cancelled:
            logger.info("Trip %s (%s) cancelled, removing", trip_id, trip.name)
            self._retire(trip_id)
            return None

        if isinstance(payload, PreliminaryTrip):
            logger.warning("Details for trip %s have no polyline/stopovers", trip_id)
            return None

        if payload.id != trip_id and payload.id in self.trips:
            del self.trips[trip_id]
            self.client.forget(trip_id)
            logger.info(
                "Removed trip with id %s because it resolved to existing trip with id %s",
                trip_id, payload.id,
            )
            return None

        try:
            trip.apply_detailed_payload(payload, now)
        except TripDataError as e:
            logger.warning("Could not apply details for trip %s: %s", trip_id, e)
            self._log_position_event("apply_failed", {"trip_id": trip_id, "error": str(e)})
            return None

        # Re-key only once the trip carries the new payload, so key and trip.id agree
        if payload.id != trip_id:
            del self.trips[trip_id]
            self.trips[payload.id] = trip
            self.client.forget(trip_id)
            logger.info("Updated trip id from %s to %s", trip_id, payload.id)
        return trip

    # --- positions ------------------------------------------------------

    def _retire(self, trip_id: str) -> None:
        self.trips.pop(trip_id, None)
        self.client.forget(trip_id)
        self._retired_count += 1

    def retire_finished(self, now: datetime.datetime | None = None) -> int:
        """Drop detailed trips whose scheduled arrival passed more than the grace period ago."""
        now = now or _utcnow()
        finished = [
            trip_id for trip_id, trip in self.trips.items()
            if trip.is_detailed and trip.is_finished(now, self.finished_grace_seconds)
        ]
        for trip_id in finished:
            self._retire(trip_id)
        if finished:
            logger.debug("Retired %d finished trips", len(finished))
        return len(finished)

    async def retire_finished_trips(self) -> None:
        try:
            self.retire_finished()
        except Exception:
            logger.exception("Error retiring finished trips")

    def position_of(self, trip: Trip, now: datetime.datetime) -> GeoPoint | None:
        if not trip.is_detailed:
            point = trip.coarse_position()
        else:
            try:
                point = trip.current_position(now)
            except (TripDataError, TripStateError) as e:
                logger.warning("Position for trip %s (%s) failed: %s", trip.id, trip.name, e)
                self._log_position_event("position_failed", {"trip_id": trip.id, "error": str(e)})
                point = trip.last_position
        if point is None:
            return None
        return to_geo(point.x, point.y, *self.origin)

    def _trip_position(self, trip: Trip, now: datetime.datetime) -> TripPosition | None:
        geo = self.position_of(trip, now)
        if geo is None:
            return None
        age = (now - trip.details_timestamp).total_seconds() if trip.is_detailed else None
        return TripPosition(
            id=trip.id,
            line=trip.name,
            product=trip.product.value,
            emoji=trip.emoji,
            origin=trip.origin_name,
            destination=trip.destination_name,
            lat=geo.lat,
            lon=geo.lon,
            detailed=trip.is_detailed,
            details_age_seconds=age,
        )

    def snapshot(self, now: datetime.datetime | None = None) -> list[TripPosition]:
        """Current position of every tracked trip (finished trips are retired first)."""
        now = now or _utcnow()
        self.retire_finished(now)
        positions = []
        for trip in list(self.trips.values()):
            pos = self._trip_position(trip, now)
            if pos is not None:
                positions.append(pos)
        return positions

    def get_trip_detail(self, trip_id: str, now: datetime.datetime | None = None) -> TripDetail | None:
        trip = self.trips.get(trip_id)
        if trip is None:
            return None
        now = now or _utcnow()

        stops = []
        for stop, geo in zip(trip.stops, trip.stop_geos()):
            stops.append(TripStopInfo(
                id=stop.id,
                name=stop.name,
                lat=geo.lat,
                lon=geo.lon,
                arrival=stop.arrival,
                departure=stop.departure,
                cancelled=stop.cancelled,
            ))

        geometry = None
        line = trip.route_line()
        if line is not None:
            geometry = [[lat, lon] for lon, lat in line.coords]

        return TripDetail(
            id=trip.id,
            line=trip.name,
            product=trip.product.value,
            origin=trip.origin_name,
            destination=trip.destination_name,
            cancelled=trip.cancelled,
            detailed=trip.is_detailed,
            position=self._trip_position(trip, now),
            stops=stops,
            geometry=geometry,
        )

    # --- diagnostics ----------------------------------------------------

    def _log_position_event(self, kind: str, payload: dict) -> None:
        event = {
            "ts": _utcnow().isoformat(),
            "kind": kind,
            **payload,
        }
        self._position_events.append(event)

    def get_position_diagnostics(self, limit: int = 100) -> dict:
        events = list(self._position_events)[-max(1, min(limit, 500)):]
        counts: dict[str, int] = {}
        for e in self._position_events:
            k = e.get("kind", "unknown")
            counts[k] = counts.get(k, 0) + 1
        return {
            "events_total": len(self._position_events),
            "counts": counts,
            "latest": events,
        }

    def get_diagnostics(self) -> dict:
        detailed = sum(1 for t in self.trips.values() if t.is_detailed)
        by_product: dict[str, int] = {}
        for t in self.trips.values():
            by_product[t.product.value] = by_product.get(t.product.value, 0) + 1
        return {
            "total_trips": len(self.trips),
            "detailed_trips": detailed,
            "preliminary_trips": len(self.trips) - detailed,
            "retired_trips": self._retired_count,
            "trips_by_product": dict(sorted(by_product.items())),
            "view_center": {"lat": self.view_center.lat, "lon": self.view_center.lon},
            "polyline_patches": len(self.patches),
            "requests": self.requests.state(),
        }
