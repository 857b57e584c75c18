"""
Animation clock.

Produces a strictly increasing stream of "now" timestamps at display refresh
cadence. Everything time-derived (smoothing, grid, box lifecycle) is
recomputed on each tick, so cells age from current to past even when no new
price arrives.
"""

import time
from typing import Callable, Iterator, Optional

DEFAULT_FPS = 60


class AnimationClock:
    """
    Monotonic millisecond clock with a frame generator.

    Example:
        clock = AnimationClock(fps=30)
        for now in clock.ticks(limit=3):
            print(now)
    """

    def __init__(
        self,
        fps: float = DEFAULT_FPS,
        time_source: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Args:
            fps: Frames per second for ticks().
            time_source: Returns wall time in seconds (defaults to time.time).
            sleep: Sleep function, replaceable in tests.
        """
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.fps = fps
        self._time_source = time_source or time.time
        self._sleep = sleep
        self._last: Optional[int] = None
        self._running = False

    @property
    def frame_interval(self) -> float:
        """Seconds between frames."""
        return 1.0 / self.fps

    def now(self) -> int:
        """Current time in epoch ms, strictly greater than the previous call."""
        current = int(self._time_source() * 1000)
        if self._last is not None and current <= self._last:
            current = self._last + 1
        self._last = current
        return current

    def ticks(self, limit: Optional[int] = None) -> Iterator[int]:
        """
        Yield timestamps at the configured cadence until stop() or ``limit``.

        Each call returns a fresh generator, so the clock can be restarted.
        """
        self._running = True
        count = 0
        while self._running and (limit is None or count < limit):
            started = self._time_source()
            yield self.now()
            count += 1
            remaining = self.frame_interval - (self._time_source() - started)
            if remaining > 0:
                self._sleep(remaining)

    def stop(self) -> None:
        self._running = False
