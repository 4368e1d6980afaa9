"""Static replacements for upstream polylines between specific stop pairs.

The upstream polyline is missing or self-intersecting at a handful of known
junctions. Each entry is keyed by "<stop name> - <next stop name>" (order
matters) and only applies to the listed lines.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import orjson

from transit_live.core.geo import GeoPoint

logger = logging.getLogger(__name__)

DEFAULT_PATCH_FILE = Path(__file__).with_name("polyline_patches.json")
SUPPORTED_VERSIONS = {1}


class PatchDataError(ValueError):
    """The patch data file is malformed or has an unsupported version."""


@dataclass(frozen=True)
class PolylinePatch:
    lines: frozenset[str]
    points: tuple[GeoPoint, ...]


def patch_key(stop_name: str, next_stop_name: str) -> str:
    return f"{stop_name} - {next_stop_name}"


class PolylinePatches:
    """Read-only lookup table of polyline patches."""

    def __init__(self, patches: dict[str, PolylinePatch], version: int = 1) -> None:
        self._patches = dict(patches)
        self.version = version

    @classmethod
    def empty(cls) -> "PolylinePatches":
        return cls({})

    @classmethod
    def load(cls, path: Path | str | None = None) -> "PolylinePatches":
        """Load a patch file (the bundled one by default)."""
        path = Path(path) if path is not None else DEFAULT_PATCH_FILE
        return cls.from_dict(orjson.loads(path.read_bytes()), source=str(path))

    @classmethod
    def from_dict(cls, data: dict, source: str = "<dict>") -> "PolylinePatches":
        version = data.get("version")
        if version not in SUPPORTED_VERSIONS:
            raise PatchDataError(f"{source}: unsupported patch file version {version!r}")

        patches: dict[str, PolylinePatch] = {}
        for key, entry in data.get("patches", {}).items():
            try:
                lines = frozenset(str(name) for name in entry["lines"])
                points = tuple(GeoPoint(float(p["lat"]), float(p["lon"])) for p in entry["points"])
            except (KeyError, TypeError, ValueError) as e:
                raise PatchDataError(f"{source}: malformed patch {key!r}: {e}") from e
            if " - " not in key or not points:
                raise PatchDataError(f"{source}: malformed patch {key!r}")
            patches[key] = PolylinePatch(lines=lines, points=points)

        logger.info("Loaded %d polyline patches (version %d) from %s", len(patches), version, source)
        return cls(patches, version=version)

    def lookup(self, stop_name: str, next_stop_name: str, line_name: str) -> list[GeoPoint] | None:
        """Patched geometry for stop_name -> next_stop_name on line_name, or None."""
        patch = self._patches.get(patch_key(stop_name, next_stop_name))
        if patch is None or line_name not in patch.lines:
            return None
        return list(patch.points)

    def __len__(self) -> int:
        return len(self._patches)
