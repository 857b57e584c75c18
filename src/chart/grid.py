"""
Grid quantization engine.

Maps the continuous (price, time) plane onto discrete cells addressed by
``"<price_index>:<time_index>"`` and classifies each visible cell against the
current time column.

Indexing conventions:
- Price lines sit at multiples of ``price_step``; a line at price ``P`` has
  ``price_index = round_half_up(P / price_step)``.
- The cell with ``price_index = i`` spans ``[(i - 1) * step, i * step)``, the
  band below its top line. The cell containing a price ``p`` is therefore
  ``floor(p / step) + 1``; a price exactly on a line belongs to the cell above.
- ``time_index = floor(t / time_interval_ms)``.

Lines are generated and sorted once per axis; cells are a cross-product of
adjacent line pairs, so per-frame cost is linear in the number of lines.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

DEFAULT_PRICE_STEP = 200.0
DEFAULT_TIME_INTERVAL_MS = 5000
DEFAULT_TIME_WINDOW_MS = 25000
DEFAULT_PADDING_RATIO = 0.05
VISIBLE_STEPS = 10  # price steps spanned by the viewport height
LINE_MARGIN = 2  # extra price lines beyond each edge


class TimeState(Enum):
    """Position of a cell's time column relative to now."""

    PAST = "past"
    CURRENT = "current"
    FUTURE = "future"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PriceLine:
    y: float
    price: float
    price_index: int


@dataclass(frozen=True)
class TimeLine:
    x: float
    time: float
    time_index: int


@dataclass(frozen=True)
class GridBox:
    """
    One visible grid cell.

    Attributes:
        key: Stable cross-frame identity, "<price_index>:<time_index>".
        price_index: Index of the cell's top price line.
        time_index: Index of the cell's left time line.
        x, y, width, height: Pixel rectangle.
        time_state: past, current or future.
    """

    key: str
    price_index: int
    time_index: int
    x: float
    y: float
    width: float
    height: float
    time_state: TimeState


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def price_index(price: float, price_step: float) -> int:
    """Index of the price line nearest to ``price`` (ties round up)."""
    return round_half_up(price / price_step)


def time_index(time_ms: float, time_interval_ms: float) -> int:
    return math.floor(time_ms / time_interval_ms)


def box_key(price_idx: int, time_idx: int) -> str:
    return f"{price_idx}:{time_idx}"


def parse_box_key(key: str) -> Tuple[int, int]:
    """
    Split a box key into (price_index, time_index).

    Raises:
        ValueError: If the key is not two integers joined by ':'.
    """
    parts = key.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid box key: {key!r}")
    return int(parts[0]), int(parts[1])


def box_price_range(price_idx: int, price_step: float) -> Tuple[float, float]:
    """Half-open price range [low, high) covered by a cell."""
    return (price_idx - 1) * price_step, price_idx * price_step


def is_price_in_box(price: float, price_idx: int, price_step: float) -> bool:
    low, high = box_price_range(price_idx, price_step)
    return low <= price < high


def box_index_for_price(price: float, price_step: float) -> int:
    """Price index of the cell whose range contains ``price``."""
    return math.floor(price / price_step) + 1


def classify_time_state(time_idx: int, current_time_idx: int) -> TimeState:
    if time_idx < current_time_idx:
        return TimeState.PAST
    if time_idx == current_time_idx:
        return TimeState.CURRENT
    return TimeState.FUTURE


class GridEngine:
    """
    Computes grid lines and cells for one frame.

    Attributes:
        price_step: Price distance between horizontal lines.
        time_interval_ms: Width of one time column.
        time_window_ms: Time span shown across the viewport width.
        visible_price_range: Price span shown across the usable height.
        padding_ratio: Vertical padding as a fraction of viewport height.
    """

    def __init__(
        self,
        price_step: float = DEFAULT_PRICE_STEP,
        time_interval_ms: int = DEFAULT_TIME_INTERVAL_MS,
        time_window_ms: int = DEFAULT_TIME_WINDOW_MS,
        visible_price_range: Optional[float] = None,
        padding_ratio: float = DEFAULT_PADDING_RATIO,
    ) -> None:
        if price_step <= 0:
            raise ValueError(f"price_step must be positive, got {price_step}")
        if time_interval_ms <= 0:
            raise ValueError(f"time_interval_ms must be positive, got {time_interval_ms}")
        if time_window_ms <= 0:
            raise ValueError(f"time_window_ms must be positive, got {time_window_ms}")

        self.price_step = price_step
        self.time_interval_ms = time_interval_ms
        self.time_window_ms = time_window_ms
        self.visible_price_range = visible_price_range or price_step * VISIBLE_STEPS
        self.padding_ratio = padding_ratio

    def pixels_per_price(self, height: float) -> float:
        padding_y = self.padding_ratio * height
        return (height - 2 * padding_y) / self.visible_price_range

    def price_lines(self, center_price: float, height: float) -> List[PriceLine]:
        """Horizontal lines around ``center_price``, sorted top to bottom."""
        center_y = height / 2
        pixels_per_price = self.pixels_per_price(height)
        nearest_round_price = price_index(center_price, self.price_step) * self.price_step
        num_lines = math.ceil(self.visible_price_range / self.price_step / 2) + LINE_MARGIN

        lines = []
        for i in range(-num_lines, num_lines + 1):
            price = nearest_round_price + i * self.price_step
            y = center_y + (center_price - price) * pixels_per_price
            lines.append(PriceLine(y=y, price=price, price_index=price_index(price, self.price_step)))

        return sorted(lines, key=lambda line: line.y)

    def time_lines(
        self,
        current_time: float,
        width: float,
        pixels_per_ms: Optional[float] = None,
    ) -> List[TimeLine]:
        """Vertical lines on every interval boundary in view, sorted left to right."""
        if pixels_per_ms is None:
            pixels_per_ms = width / self.time_window_ms
        center_x = width / 2
        oldest_visible = current_time - self.time_window_ms / 2
        newest_visible = current_time + self.time_window_ms / 2
        start = time_index(oldest_visible, self.time_interval_ms) * self.time_interval_ms

        lines = []
        t = start
        while t <= newest_visible + self.time_interval_ms:
            x = center_x + (t - current_time) * pixels_per_ms
            lines.append(TimeLine(x=x, time=t, time_index=time_index(t, self.time_interval_ms)))
            t += self.time_interval_ms

        return sorted(lines, key=lambda line: line.x)

    def compute_boxes(
        self,
        width: float,
        height: float,
        center_price: float,
        current_time: float,
        pixels_per_ms: Optional[float] = None,
    ) -> List[GridBox]:
        """All cells intersecting the viewport for one frame."""
        price_lines = self.price_lines(center_price, height)
        time_lines = self.time_lines(current_time, width, pixels_per_ms)
        current_time_idx = time_index(current_time, self.time_interval_ms)

        boxes = []
        for upper, lower in zip(price_lines, price_lines[1:]):
            for left, right in zip(time_lines, time_lines[1:]):
                if right.x < 0 or left.x > width or lower.y < 0 or upper.y > height:
                    continue

                boxes.append(
                    GridBox(
                        key=box_key(upper.price_index, left.time_index),
                        price_index=upper.price_index,
                        time_index=left.time_index,
                        x=left.x,
                        y=upper.y,
                        width=right.x - left.x,
                        height=lower.y - upper.y,
                        time_state=classify_time_state(left.time_index, current_time_idx),
                    )
                )

        return boxes
