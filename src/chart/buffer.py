"""Bounded sliding window of recent price points."""

from collections import deque
from typing import Optional, Tuple

from ..feeds.base import PricePoint

DEFAULT_MAX_POINTS = 100


class PriceBuffer:
    """
    Insertion-ordered buffer holding at most ``max_points`` price points.

    The oldest point is evicted when a new one overflows the capacity. Reads
    always return tuple snapshots so callers never observe later mutation.
    """

    def __init__(self, max_points: int = DEFAULT_MAX_POINTS) -> None:
        if max_points < 1:
            raise ValueError(f"max_points must be >= 1, got {max_points}")
        self.max_points = max_points
        self._points: deque[PricePoint] = deque(maxlen=max_points)

    def add_point(self, price: float, time: int) -> Tuple[PricePoint, ...]:
        """Append a point, evicting the oldest on overflow, and return a snapshot."""
        self._points.append(PricePoint(price=price, time=time))
        return tuple(self._points)

    def points(self) -> Tuple[PricePoint, ...]:
        return tuple(self._points)

    @property
    def latest(self) -> Optional[PricePoint]:
        return self._points[-1] if self._points else None

    def visible_points(self, now: int, time_window_ms: int) -> Tuple[PricePoint, ...]:
        """Points no older than the left edge of a window centred on ``now``."""
        oldest_visible = now - time_window_ms / 2
        return tuple(p for p in self._points if p.time >= oldest_visible)

    def clear(self) -> None:
        self._points.clear()

    def __len__(self) -> int:
        return len(self._points)
