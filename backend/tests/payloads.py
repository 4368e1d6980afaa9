"""Builders for HAFAS-shaped trip payloads used across the tests.

Geometry is laid out in planar metres around the default origin and
converted to lat/lon, so expected positions can be stated in metres.
"""

import datetime

from transit_live.core.geo import to_geo

T0 = datetime.datetime(2026, 5, 4, 12, 0, tzinfo=datetime.timezone.utc)


def at(seconds: float) -> datetime.datetime:
    return T0 + datetime.timedelta(seconds=seconds)


def iso(seconds: float | None) -> str | None:
    return at(seconds).isoformat() if seconds is not None else None


def feature(x: float, y: float, stop_id: str | None = None, name: str | None = None) -> dict:
    geo = to_geo(x, y)
    properties = {}
    if stop_id:
        properties = {"type": "stop", "id": stop_id, "name": name or stop_id}
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [geo.lon, geo.lat]},
        "properties": properties,
    }


def stopover(
    stop_id: str,
    name: str,
    x: float,
    y: float,
    arrival: float | None = None,
    departure: float | None = None,
    cancelled: bool = False,
) -> dict:
    geo = to_geo(x, y)
    return {
        "stop": {
            "type": "stop",
            "id": stop_id,
            "name": name,
            "location": {"type": "location", "latitude": geo.lat, "longitude": geo.lon},
        },
        "arrival": iso(arrival),
        "departure": iso(departure),
        "cancelled": cancelled,
    }


def preliminary_raw(
    trip_id: str = "1|100|0|86|4052026",
    line: str = "S1",
    product: str = "suburban",
    x: float = 0.0,
    y: float = 0.0,
    arrival: float | None = 150,
) -> dict:
    geo = to_geo(x, y)
    return {
        "id": trip_id,
        "line": {"type": "line", "id": line.lower(), "name": line, "product": product},
        "origin": {"type": "stop", "id": "900000001", "name": "S Alpha (Berlin)"},
        "destination": {"type": "stop", "id": "900000003", "name": "S Gamma [Bus]"},
        "cancelled": False,
        "departure": iso(60),
        "arrival": iso(arrival),
        "currentLocation": {"type": "location", "latitude": geo.lat, "longitude": geo.lon},
    }


def detailed_raw(
    features: list[dict],
    stopovers: list[dict],
    trip_id: str = "1|100|0|86|4052026",
    line: str = "S1",
    arrival: float | None = 150,
    cancelled: bool = False,
) -> dict:
    raw = preliminary_raw(trip_id=trip_id, line=line, arrival=arrival)
    raw["cancelled"] = cancelled
    raw["polyline"] = {"type": "FeatureCollection", "features": features}
    raw["stopovers"] = stopovers
    return raw


def three_stop_raw(trip_id: str = "1|100|0|86|4052026", line: str = "S1", b_cancelled: bool = False) -> dict:
    """A (0,0) dep 60s -> B (1000,0) arr 90s dep 120s -> C (1000,500) arr 150s.

    A's segment has an intermediate point 400 m along, B is reached at 1000 m.
    """
    features = [
        feature(0, 0, "A", "S Alpha"),
        feature(400, 0),
        feature(1000, 0, "B", "S Beta"),
        feature(1000, 250),
        feature(1000, 500, "C", "S Gamma"),
    ]
    stopovers = [
        stopover("A", "S Alpha", 0, 0, departure=60),
        stopover("B", "S Beta", 1000, 0, arrival=90, departure=120, cancelled=b_cancelled),
        stopover("C", "S Gamma", 1000, 500, arrival=150),
    ]
    return detailed_raw(features, stopovers, trip_id=trip_id, line=line)
