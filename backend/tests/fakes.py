"""Test doubles for the request timer, the clock and the BVG client."""


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000


class FakeTimer:
    def __init__(self) -> None:
        self.running = False
        self.interval_ms = None
        self.callback = None
        self.starts: list[int] = []

    def start(self, callback, interval_ms: int) -> None:
        self.running = True
        self.callback = callback
        self.interval_ms = interval_ms
        self.starts.append(interval_ms)

    def stop(self) -> None:
        self.running = False


class FakeClient:
    """Serves a canned listing and per-trip detail results (or exceptions)."""

    def __init__(self, listing=None, details=None) -> None:
        self.listing = listing or []
        self.details = details or {}
        self.requested: list[str] = []
        self.forgotten: list[str] = []

    async def fetch_all_trips(self) -> list[dict]:
        if isinstance(self.listing, Exception):
            raise self.listing
        return self.listing

    async def fetch_trip_details(self, trip_id: str):
        self.requested.append(trip_id)
        result = self.details[trip_id]
        if isinstance(result, Exception):
            raise result
        return result

    def forget(self, trip_id: str) -> None:
        self.forgotten.append(trip_id)
