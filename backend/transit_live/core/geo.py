"""Local planar projection around a fixed origin, plus polyline helpers.

Every distance and interpolation in the engine happens in planar metres.
The projection is equirectangular: longitude is scaled by the cosine of the
origin latitude, and one degree is 1/360 of a 40,074 km circumference.
"""

import math
from typing import NamedTuple, Sequence

from shapely.geometry import LineString

# Alexanderplatz, Berlin
ORIGIN_LAT = 52.519170
ORIGIN_LON = 13.409606

METERS_PER_DEG = 40_074_000 / 360


class GeoPoint(NamedTuple):
    lat: float
    lon: float


class PlanarPoint(NamedTuple):
    x: float  # metres east of origin
    y: float  # metres north of origin


def to_planar(
    lat: float, lon: float, origin_lat: float = ORIGIN_LAT, origin_lon: float = ORIGIN_LON
) -> PlanarPoint:
    lon_scale = math.cos(math.radians(origin_lat))
    x = (lon - origin_lon) * METERS_PER_DEG * lon_scale
    y = (lat - origin_lat) * METERS_PER_DEG
    return PlanarPoint(x, y)


def to_geo(
    x: float, y: float, origin_lat: float = ORIGIN_LAT, origin_lon: float = ORIGIN_LON
) -> GeoPoint:
    lon_scale = math.cos(math.radians(origin_lat))
    lon = x / (METERS_PER_DEG * lon_scale) + origin_lon
    lat = y / METERS_PER_DEG + origin_lat
    return GeoPoint(lat, lon)


def distance(a: PlanarPoint, b: PlanarPoint) -> float:
    """Euclidean distance in metres between two planar points."""
    return math.hypot(b.x - a.x, b.y - a.y)


def segment_length(start: PlanarPoint, points: Sequence[PlanarPoint]) -> float:
    """Cumulative length of the polyline start -> points[0] -> ... -> points[-1]."""
    if not points:
        return 0.0
    return LineString([start, *points]).length
