"""Rate-limited job queue for trip detail requests.

One job runs per timer tick. The tick interval can be shortened for a while
(burst, e.g. after the user moved the map) and execution can be paused for a
while (backoff, after the server signalled overload). The queue itself is
either appended to or replaced wholesale with a new priority order.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 600
DEFAULT_BURST_INTERVAL_MS = 300
DEFAULT_BURST_DURATION_MS = 60_000
DEFAULT_BACKOFF_DURATION_MS = 10_000

# APScheduler logger of the request timer; it warns on every tick skipped
# while a request is still in flight
TIMER_LOGGER_NAME = f"{__name__}.timer"


@dataclass(frozen=True)
class ScheduledJob:
    trip_id: str
    run: Callable[[], Awaitable[None]]


class Timer(Protocol):
    running: bool

    def start(self, callback: Callable[[], Awaitable[None]], interval_ms: int) -> None: ...

    def stop(self) -> None: ...


class IntervalTimer:
    """Recurring APScheduler interval job; at most one tick runs at a time."""

    JOB_ID = "request_scheduler_tick"

    def __init__(self, scheduler: BaseScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler(logger=logging.getLogger(TIMER_LOGGER_NAME))
        self._job = None

    @property
    def running(self) -> bool:
        return self._job is not None

    def start(self, callback: Callable[[], Awaitable[None]], interval_ms: int) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
        self._job = self.scheduler.add_job(
            callback,
            "interval",
            seconds=interval_ms / 1000,
            id=self.JOB_ID,
            name="Run next trip detail request",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def stop(self) -> None:
        if self._job is not None:
            self._job.remove()
            self._job = None

    def shutdown(self) -> None:
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


class RequestScheduler:
    """Runs queued jobs one per tick, honouring burst and backoff windows.

    Windows are stored as monotonic "active until" instants and only looked
    at once per tick, so changing modes never interrupts a running job.
    """

    def __init__(
        self,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        timer: Timer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_interval_ms = interval_ms
        self._interval_ms = interval_ms
        self._timer = timer or IntervalTimer()
        self._clock = clock
        self._queue: deque[ScheduledJob] = deque()
        self._burst_until: float | None = None
        self._backoff_until: float | None = None

    # --- state --------------------------------------------------------

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def running(self) -> bool:
        return self._timer.running

    @property
    def bursting(self) -> bool:
        return self._burst_until is not None and self._clock() < self._burst_until

    @property
    def backing_off(self) -> bool:
        return self._backoff_until is not None and self._clock() < self._backoff_until

    def __len__(self) -> int:
        return len(self._queue)

    def pending_trip_ids(self) -> list[str]:
        return [job.trip_id for job in self._queue]

    def state(self) -> dict:
        now = self._clock()
        return {
            "running": self.running,
            "interval_ms": self._interval_ms,
            "base_interval_ms": self.base_interval_ms,
            "queued": len(self._queue),
            "burst_remaining_s": round(self._burst_until - now, 3) if self.bursting else None,
            "backoff_remaining_s": round(self._backoff_until - now, 3) if self.backing_off else None,
        }

    # --- queue --------------------------------------------------------

    def enqueue(self, job: ScheduledJob) -> None:
        self._queue.append(job)
        self.start()

    def replace_queue(self, jobs: Iterable[ScheduledJob]) -> None:
        self._queue = deque(jobs)
        self.start()

    # --- modes --------------------------------------------------------

    def burst(
        self,
        interval_ms: int = DEFAULT_BURST_INTERVAL_MS,
        duration_ms: int = DEFAULT_BURST_DURATION_MS,
    ) -> None:
        """Tick every interval_ms for duration_ms. Ignored while a burst is active."""
        if self.bursting:
            logger.debug("Burst requested while bursting, ignoring")
            return
        self._burst_until = self._clock() + duration_ms / 1000
        logger.debug("Burst: %d ms interval for %d ms", interval_ms, duration_ms)
        self._set_interval(interval_ms)

    def backoff(self, duration_ms: int = DEFAULT_BACKOFF_DURATION_MS) -> None:
        """Pause job execution for duration_ms; ends any burst right away."""
        if self._burst_until is not None:
            self._end_burst()
        self._backoff_until = self._clock() + duration_ms / 1000
        logger.info("Backing off detail requests for %.1fs (%d queued)", duration_ms / 1000, len(self._queue))

    def _end_burst(self) -> None:
        self._burst_until = None
        self._set_interval(self.base_interval_ms)

    def _set_interval(self, interval_ms: int) -> None:
        if interval_ms == self._interval_ms:
            return
        self._interval_ms = interval_ms
        if self._timer.running:
            self._timer.stop()
            self._timer.start(self.tick, interval_ms)

    # --- timer --------------------------------------------------------

    def start(self) -> None:
        if not self._timer.running:
            self._timer.start(self.tick, self._interval_ms)

    def stop(self) -> None:
        self._timer.stop()

    def shutdown(self) -> None:
        if isinstance(self._timer, IntervalTimer):
            self._timer.shutdown()
        else:
            self._timer.stop()

    async def tick(self) -> None:
        now = self._clock()
        if self._burst_until is not None and now >= self._burst_until:
            logger.debug("Burst window over, back to %d ms", self.base_interval_ms)
            self._end_burst()

        if self._backoff_until is not None:
            if now < self._backoff_until:
                return
            self._backoff_until = None
            logger.info("Backoff over, resuming detail requests (%d queued)", len(self._queue))

        if not self._queue:
            return
        job = self._queue.popleft()
        try:
            await job.run()
        except Exception:
            logger.exception("Request job for trip %s failed", job.trip_id)
