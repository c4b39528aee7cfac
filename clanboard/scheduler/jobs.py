"""
Periodic jobs on their own threads.

Each job keeps a fixed cadence measured from its start time (plus offset).
A run that overruns one or more ticks does not queue them up: the missed
ticks are skipped and the job waits for the next one on the original grid,
so a job never overlaps itself.
"""
import logging
import math
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger("scheduler.jobs")


def next_deadline(previous: float, period: float, now: float) -> float:
    """
    Next tick strictly after ``now`` on the grid ``previous + k * period``.

    Args:
        previous: Deadline of the run that just finished
        period: Seconds between ticks
        now: Current monotonic time

    Returns:
        The first grid point after now (at least previous + period)
    """
    if period <= 0:
        raise ValueError("period must be positive")
    candidate = previous + period
    if candidate > now:
        return candidate
    missed = math.floor((now - previous) / period)
    return previous + (missed + 1) * period


class PeriodicJob:
    """
    One named background job.

    Exceptions from ``fn`` are logged and the schedule continues.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], object],
        period: float,
        offset: float = 0.0,
        run_immediately: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Used in thread name and logs
            fn: Work for one tick
            period: Seconds between ticks
            offset: Delay before the first tick (ignored if run_immediately)
            run_immediately: First tick at start()
            clock: Monotonic clock
        """
        if period <= 0:
            raise ValueError(f"{name}: period must be positive")
        self.name = name
        self._fn = fn
        self.period = period
        self.offset = max(0.0, offset)
        self.run_immediately = run_immediately
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0
        self.skipped_ticks = 0
        self.last_result = None

    def run_once(self) -> bool:
        """Run one tick; returns False if the job raised."""
        started = self._clock()
        try:
            self.last_result = self._fn()
        except Exception as e:
            self.failures += 1
            logger.error(f"Job {self.name} failed: {e}", exc_info=True)
            return False
        finally:
            self.runs += 1
        logger.debug(f"Job {self.name} finished in {self._clock() - started:.1f}s")
        return True

    def _loop(self):
        deadline = self._clock() + (0.0 if self.run_immediately else self.offset)
        while not self._stop.wait(max(0.0, deadline - self._clock())):
            self.run_once()
            now = self._clock()
            following = next_deadline(deadline, self.period, now)
            skipped = int(round((following - deadline) / self.period)) - 1
            if skipped > 0:
                self.skipped_ticks += skipped
                logger.warning(f"Job {self.name} overran; skipping {skipped} tick(s)")
            deadline = following

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Started job {self.name} [period={self.period}s, offset={self.offset}s]")

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
