"""Exponential smoothing of the chart's center price."""

import math
from typing import Optional

from .buffer import PriceBuffer

DEFAULT_SMOOTHING_MS = 500


class CenterPriceSmoother:
    """
    Follows the latest price with a time-based exponential lag.

    The decay depends on elapsed milliseconds rather than on the number of
    ticks, so the reference price moves the same way whatever the feed rate:

        alpha = 1 - exp(-dt / smoothing_ms)
        smoothed += (latest - smoothed) * alpha
    """

    def __init__(self, smoothing_ms: float = DEFAULT_SMOOTHING_MS) -> None:
        self.smoothing_ms = smoothing_ms
        self.smoothed_price: Optional[float] = None
        self.last_update_time: Optional[int] = None

    def update(self, latest_price: float, now: int) -> float:
        if self.smoothed_price is None or self.last_update_time is None:
            self.smoothed_price = latest_price
        else:
            delta_ms = max(0, now - self.last_update_time)
            if self.smoothing_ms <= 0:
                alpha = 1.0
            else:
                alpha = 1 - math.exp(-delta_ms / self.smoothing_ms)
            self.smoothed_price += (latest_price - self.smoothed_price) * alpha

        self.last_update_time = now
        return self.smoothed_price

    def update_from_buffer(self, buffer: PriceBuffer, now: int) -> Optional[float]:
        """Smooth toward the buffer's newest price; None while the buffer is empty."""
        latest = buffer.latest
        if latest is None:
            return None
        return self.update(latest.price, now)

    def reset(self) -> None:
        self.smoothed_price = None
        self.last_update_time = None
