"""
Chart engine: the non-visual pipeline behind the price grid.

- PriceBuffer: bounded window of recent price points
- AnimationClock: strictly increasing frame timestamps
- CenterPriceSmoother: time-based exponential smoothing of the center price
- GridEngine: (price, time) -> cell quantization and time classification
- BoxEventEngine: at-most-once activated/expired detection per cell
"""

from .buffer import PriceBuffer
from .clock import AnimationClock
from .events import BoxEvent, BoxEventEngine, BoxEventType
from .grid import (
    GridBox,
    GridEngine,
    PriceLine,
    TimeLine,
    TimeState,
    box_index_for_price,
    box_key,
    box_price_range,
    classify_time_state,
    is_price_in_box,
    parse_box_key,
    price_index,
    time_index,
)
from .smoother import CenterPriceSmoother

__all__ = [
    "PriceBuffer",
    "AnimationClock",
    "CenterPriceSmoother",
    # Grid
    "GridEngine",
    "GridBox",
    "PriceLine",
    "TimeLine",
    "TimeState",
    "price_index",
    "time_index",
    "box_key",
    "parse_box_key",
    "box_price_range",
    "is_price_in_box",
    "box_index_for_price",
    "classify_time_state",
    # Lifecycle
    "BoxEventEngine",
    "BoxEvent",
    "BoxEventType",
]
