"""
Live price feeds for the price grid game.

This module provides feed abstractions and implementations:
- PriceFeedBase: Abstract base class for all feeds
- BinanceTradeFeed: Push-socket feed on the Binance trade stream
- PythStreamFeed: Chunked-stream feed on the Pyth streaming endpoint

Usage:
    from src.feeds import BinanceTradeFeed

    feed = BinanceTradeFeed("btcusdt", throttle_ms=250)
    feed.subscribe(lambda point: print(point.price))
    feed.connect()
"""

from .base import (
    FeedError,
    FeedState,
    FeedStats,
    PriceFeedBase,
    PricePoint,
    get_current_time_ms,
)
from .binance import BinanceTradeFeed
from .pyth import PythStreamFeed

__all__ = [
    # Base classes and types
    "PriceFeedBase",
    "PricePoint",
    "FeedState",
    "FeedStats",
    "get_current_time_ms",
    # Exceptions
    "FeedError",
    # Implementations
    "BinanceTradeFeed",
    "PythStreamFeed",
]
