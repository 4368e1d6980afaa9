"""Tests for the polyline patch overlay."""

import pytest

from transit_live.core.geo import GeoPoint
from transit_live.core.polyline_patches import PatchDataError, PolylinePatches

GESUNDBRUNNEN = "S+U Gesundbrunnen Bhf (Berlin)"
BORNHOLMER = "S Bornholmer Str. (Berlin)"


def test_bundled_patches_load():
    patches = PolylinePatches.load()
    assert patches.version == 1
    assert len(patches) == 8


def test_lookup_match():
    patches = PolylinePatches.load()
    points = patches.lookup(GESUNDBRUNNEN, BORNHOLMER, "S1")
    assert points is not None
    assert points[0] == GeoPoint(52.5494, 13.39409)
    assert points[-1] == GeoPoint(52.55476, 13.39784)


def test_lookup_is_order_sensitive():
    patches = PolylinePatches.load()
    forward = patches.lookup(GESUNDBRUNNEN, BORNHOLMER, "S2")
    backward = patches.lookup(BORNHOLMER, GESUNDBRUNNEN, "S2")
    assert forward is not None and backward is not None
    assert forward[0] != backward[0]


def test_lookup_line_not_listed():
    patches = PolylinePatches.load()
    assert patches.lookup(GESUNDBRUNNEN, BORNHOLMER, "S8") is None


def test_lookup_unknown_pair():
    patches = PolylinePatches.load()
    assert patches.lookup("S Alpha", "S Beta", "S1") is None


def test_lookup_returns_copy():
    patches = PolylinePatches.load()
    points = patches.lookup(GESUNDBRUNNEN, BORNHOLMER, "S1")
    points.clear()
    assert patches.lookup(GESUNDBRUNNEN, BORNHOLMER, "S1")


def test_load_from_file(tmp_path):
    path = tmp_path / "patches.json"
    path.write_text(
        '{"version": 1, "patches": {"A - B": {"lines": ["U5"], '
        '"points": [{"lat": 52.5, "lon": 13.4}, {"lat": 52.51, "lon": 13.41}]}}}'
    )
    patches = PolylinePatches.load(path)
    assert patches.lookup("A", "B", "U5") == [GeoPoint(52.5, 13.4), GeoPoint(52.51, 13.41)]


def test_unsupported_version():
    with pytest.raises(PatchDataError):
        PolylinePatches.from_dict({"version": 99, "patches": {}})


def test_malformed_entry():
    with pytest.raises(PatchDataError):
        PolylinePatches.from_dict({"version": 1, "patches": {"A - B": {"lines": ["S1"]}}})


def test_empty():
    assert PolylinePatches.empty().lookup(GESUNDBRUNNEN, BORNHOLMER, "S1") is None
