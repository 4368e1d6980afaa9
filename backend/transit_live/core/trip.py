"""Per-vehicle schedule model and time-based position interpolation.

A Trip starts out preliminary (a listing entry with a coarse self-reported
location). Applying a detailed payload turns it into a detailed trip for good:
the polyline and stopovers are folded into an ordered stop sequence where each
stop owns the geometry leading to the next stop, and the vehicle position at
any instant is interpolated along that geometry from the schedule.
"""

import datetime
import logging
from dataclasses import dataclass, field

from shapely.geometry import LineString

from transit_live.core.geo import (
    ORIGIN_LAT,
    ORIGIN_LON,
    GeoPoint,
    PlanarPoint,
    distance,
    segment_length,
    to_geo,
    to_planar,
)
from transit_live.core.polyline_patches import PolylinePatches
from transit_live.schemas.trip import DetailedTrip, PreliminaryTrip, Product

logger = logging.getLogger(__name__)

# A stop with identical arrival and departure is widened to 15 s in total
MIN_DWELL_HALF = datetime.timedelta(seconds=7.5)

# Slack for float drift between the shapely segment length and the walk
_WALK_TOLERANCE_M = 1e-6

_PRODUCT_EMOJI = {
    Product.SUBURBAN: "🚈",
    Product.SUBWAY: "🚇",
    Product.TRAM: "🚋",
    Product.BUS: "🚌",
    Product.FERRY: "🛥️",
}


class TripStateError(RuntimeError):
    """Operation needs a detailed trip."""


class TripDataError(ValueError):
    """Schedule and geometry of a trip do not fit together."""


class GeometryMismatchError(TripDataError):
    """Segment walk ran out of points before reaching the target distance."""


def ease(t: float) -> float:
    """Smoothstep: slow start, slow stop."""
    return t * t * (3 - 2 * t)


def sanitize_stop_name(name: str) -> str:
    """Drop upstream suffixes like ' [U5]' and ' (Berlin)' for display."""
    if name.endswith("]"):
        bracket = name.rfind(" [")
        if bracket != -1:
            name = name[:bracket]
    if name.endswith(" (Berlin)"):
        name = name[: -len(" (Berlin)")]
    return name


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Stop:
    id: str
    name: str
    point: PlanarPoint
    location: GeoPoint | None = None
    arrival: datetime.datetime | None = None
    departure: datetime.datetime | None = None
    cancelled: bool = False
    segment_points: list[PlanarPoint] = field(default_factory=list)
    segment_length: float = 0.0

    @property
    def has_times(self) -> bool:
        return self.arrival is not None or self.departure is not None


class Trip:
    """One tracked vehicle: payload, schedule and position engine."""

    def __init__(
        self,
        payload: PreliminaryTrip | DetailedTrip,
        patches: PolylinePatches | None = None,
        origin_lat: float = ORIGIN_LAT,
        origin_lon: float = ORIGIN_LON,
    ) -> None:
        self.payload = payload
        self.patches = patches or PolylinePatches.empty()
        self.projection_origin = (origin_lat, origin_lon)
        self.details_timestamp: datetime.datetime | None = None
        self.stops: tuple[Stop, ...] = ()
        self._last_position: PlanarPoint | None = None

    # --- payload projection -------------------------------------------

    @property
    def id(self) -> str:
        return self.payload.id

    @property
    def name(self) -> str:
        return self.payload.line.name

    @property
    def product(self) -> Product:
        return self.payload.line.product

    @property
    def emoji(self) -> str:
        return _PRODUCT_EMOJI.get(self.product, "🐒")

    @property
    def origin_name(self) -> str:
        return sanitize_stop_name(self.payload.origin.name) if self.payload.origin else ""

    @property
    def destination_name(self) -> str:
        return sanitize_stop_name(self.payload.destination.name) if self.payload.destination else ""

    @property
    def cancelled(self) -> bool:
        return self.payload.cancelled

    @property
    def departure(self) -> datetime.datetime | None:
        return self.payload.departure

    @property
    def arrival(self) -> datetime.datetime | None:
        if self.payload.arrival is not None:
            return self.payload.arrival
        if self.stops:
            return self.stops[-1].arrival
        return None

    @property
    def is_detailed(self) -> bool:
        return self.details_timestamp is not None

    # --- detailed data ------------------------------------------------

    def apply_detailed_payload(
        self, payload: DetailedTrip, now: datetime.datetime | None = None
    ) -> None:
        """Rebuild the stop sequence from a detail record and switch to detailed mode."""
        stops = self._stops_from_polyline(payload)
        self._match_stopovers(stops, payload)
        stops = self._drop_unscheduled(stops)
        if not stops:
            raise TripDataError(f"Trip {payload.id} ({payload.line.name}): no scheduled stops in detail payload")
        self._apply_patches(stops, payload.line.name)

        stops[-1].segment_points = []
        for stop in stops:
            stop.segment_length = segment_length(stop.point, stop.segment_points)

        self._check_ordering(stops, payload)

        # Swap everything in at once so readers never see a half-built trip
        self.stops = tuple(stops)
        self.payload = payload
        self.details_timestamp = now or _utcnow()
        self._last_position = None

    def touch(self, now: datetime.datetime | None = None) -> None:
        """Mark the details as fresh without changing them (304 from upstream)."""
        if self.is_detailed:
            self.details_timestamp = now or _utcnow()

    def _project(self, lat: float, lon: float) -> PlanarPoint:
        return to_planar(lat, lon, *self.projection_origin)

    def _stops_from_polyline(self, payload: DetailedTrip) -> list[Stop]:
        stops: list[Stop] = []
        prev_stop_id = None
        for feature in payload.polyline.features:
            lon, lat = feature.geometry.coordinates
            point = self._project(lat, lon)
            stop_id = feature.properties.id

            # Consecutive occurrences of the same stop collapse into one
            if stop_id and stop_id != prev_stop_id:
                if stops:
                    stops[-1].segment_points.append(point)
                stops.append(Stop(id=stop_id, name=feature.properties.name or "", point=point))
                prev_stop_id = stop_id
            elif stops:
                stops[-1].segment_points.append(point)
            else:
                logger.warning(
                    "Polyline point without stop id before first stop for trip %s (%s)",
                    payload.id, payload.line.name,
                )
        return stops

    @staticmethod
    def _match_stopovers(stops: list[Stop], payload: DetailedTrip) -> None:
        """Fill in times from stopovers, walking both sequences forward only."""
        stopovers = payload.stopovers
        done = -1
        for i, stop in enumerate(stops):
            for j in range(done + 1, len(stopovers)):
                stopover = stopovers[j]
                if stopover.stop.id != stop.id:
                    if stop.has_times:
                        break
                    continue

                # Repeated stopovers: earliest arrival, latest departure.
                # The first stop is departure-only.
                if stop.arrival is None and i > 0:
                    stop.arrival = stopover.arrival
                if stopover.departure is not None:
                    stop.departure = stopover.departure
                stop.cancelled = stopover.cancelled
                if stopover.stop.name:
                    stop.name = stopover.stop.name
                if stopover.stop.location is not None:
                    stop.location = GeoPoint(
                        stopover.stop.location.latitude, stopover.stop.location.longitude
                    )
                done = j

            if stop.arrival is not None and stop.arrival == stop.departure:
                stop.arrival -= MIN_DWELL_HALF
                stop.departure += MIN_DWELL_HALF

    @staticmethod
    def _drop_unscheduled(stops: list[Stop]) -> list[Stop]:
        kept: list[Stop] = []
        for stop in stops:
            if stop.has_times:
                kept.append(stop)
                continue
            logger.debug("Dropping stop %s (%s): not found in stopovers", stop.id, stop.name)
            if kept:
                # Previous segment ends at this stop; continue it along this one's geometry
                kept[-1].segment_points.extend(stop.segment_points)
        return kept

    def _apply_patches(self, stops: list[Stop], line_name: str) -> None:
        for stop, next_stop in zip(stops, stops[1:]):
            patch = self.patches.lookup(stop.name, next_stop.name, line_name)
            if patch is None:
                continue
            points = [self._project(p.lat, p.lon) for p in patch]
            if points[-1] != next_stop.point:
                points.append(next_stop.point)
            stop.segment_points = points
            logger.debug("Patched polyline %s -> %s on %s", stop.name, next_stop.name, line_name)

    @staticmethod
    def _check_ordering(stops: list[Stop], payload: DetailedTrip) -> None:
        for a, b in zip(stops, stops[1:]):
            if a.departure is not None and b.arrival is not None and a.departure > b.arrival:
                logger.warning(
                    "Trip %s (%s): departure %s at %s is after arrival %s at %s",
                    payload.id, payload.line.name, a.departure, a.name, b.arrival, b.name,
                )
        last_arrival = stops[-1].arrival
        if payload.arrival is not None and last_arrival != payload.arrival:
            logger.warning(
                "Mismatch between last stop arrival %s and trip arrival %s for trip id %s (%s)",
                last_arrival, payload.arrival, payload.id, payload.line.name,
            )

    # --- position -----------------------------------------------------

    def coarse_position(self) -> PlanarPoint | None:
        """Self-reported location from the payload, if any."""
        loc = self.payload.current_location
        if loc is None:
            return None
        return self._project(loc.latitude, loc.longitude)

    @property
    def last_position(self) -> PlanarPoint | None:
        """Last successfully interpolated position, else the coarse location."""
        return self._last_position or self.coarse_position()

    def current_position(self, now: datetime.datetime | None = None) -> PlanarPoint:
        if not self.is_detailed:
            raise TripStateError(f"Trip {self.id} has no detailed data")
        now = now or _utcnow()
        stops = self.stops

        from_stop = stops[0]
        to_stop = stops[-1]
        for stop in stops[1:]:
            if stop.cancelled:
                continue
            if (stop.arrival is not None and stop.arrival <= now) or (
                stop.departure is not None and stop.departure <= now
            ):
                from_stop = stop
            if stop.arrival is not None and stop.arrival > now:
                to_stop = stop
                break

        if from_stop is to_stop or from_stop.departure is None or from_stop.departure >= now:
            self._last_position = from_stop.point
            return from_stop.point
        if to_stop.arrival is None:
            raise TripDataError(f"Trip {self.id}: stop {to_stop.name} has no arrival time")

        # TODO: merge segments across cancelled stops between from_stop and to_stop
        duration = (to_stop.arrival - from_stop.departure).total_seconds()
        elapsed = (now - from_stop.departure).total_seconds()
        linear = elapsed / duration if duration > 0 else 1.0
        if not 0 < linear < 1:
            logger.warning(
                "Trip %s (%s): progress %.3f between %s and %s out of range, clamping",
                self.id, self.name, linear, from_stop.name, to_stop.name,
            )
            linear = min(max(linear, 0.0), 1.0)
        progress = ease(linear)

        point = self._walk_segment(from_stop, progress * from_stop.segment_length)
        self._last_position = point
        return point

    def _walk_segment(self, stop: Stop, target: float) -> PlanarPoint:
        remaining = target
        p1 = stop.point
        for p2 in stop.segment_points:
            step = distance(p1, p2)
            if remaining <= step + _WALK_TOLERANCE_M:
                ratio = min(remaining / step, 1.0) if step > 0 else 0.0
                return PlanarPoint(p1.x + ratio * (p2.x - p1.x), p1.y + ratio * (p2.y - p1.y))
            remaining -= step
            p1 = p2
        raise GeometryMismatchError(
            f"Trip {self.id}: segment from {stop.name} exhausted with {remaining:.3f} m left "
            f"of {target:.3f} m (length {stop.segment_length:.3f} m, {len(stop.segment_points)} points)"
        )

    def current_geo(self, now: datetime.datetime | None = None) -> GeoPoint:
        point = self.current_position(now)
        return to_geo(point.x, point.y, *self.projection_origin)

    def is_finished(self, now: datetime.datetime | None = None, grace_seconds: float = 15) -> bool:
        arrival = self.arrival
        if arrival is None:
            return False
        now = now or _utcnow()
        return arrival + datetime.timedelta(seconds=grace_seconds) < now

    # --- geometry export ----------------------------------------------

    def stop_geos(self) -> list[GeoPoint]:
        """Stop coordinates as published in the stopovers, else the polyline point."""
        return [
            s.location or to_geo(s.point.x, s.point.y, *self.projection_origin)
            for s in self.stops
        ]

    def route_points(self) -> list[PlanarPoint]:
        if not self.stops:
            return []
        points = [self.stops[0].point]
        for stop in self.stops:
            points.extend(stop.segment_points)
        return points

    def route_line(self) -> LineString | None:
        """Full route as a lon/lat LineString, None if there is no geometry."""
        points = self.route_points()
        if len(points) < 2:
            return None
        coords = []
        for p in points:
            geo = to_geo(p.x, p.y, *self.projection_origin)
            coords.append((geo.lon, geo.lat))
        return LineString(coords)
