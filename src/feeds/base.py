"""
Base Class for Live Price Feeds

Provides the uniform price-point signal every feed adapter produces:
- PricePoint records (price + epoch milliseconds)
- Connection state view (price_data, is_connected, error)
- Leading-edge throttling of accepted updates
- Subscriber callbacks
- Reconnect timer management
- Statistics collection
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricePoint:
    """A single price observation."""
    price: float
    time: int  # Unix timestamp in milliseconds


@dataclass(frozen=True)
class FeedState:
    """
    Snapshot of a feed's signal view.

    Attributes:
        price_data: Last accepted price point, or None before the first one.
        is_connected: Whether the transport is currently open.
        error: Last transport error text, cleared on a successful connect.
        exhausted: True once the feed gave up retrying. Terminal.
    """
    price_data: Optional[PricePoint] = None
    is_connected: bool = False
    error: Optional[str] = None
    exhausted: bool = False


@dataclass
class FeedStats:
    """Statistics for a feed."""
    updates_received: int = 0
    updates_throttled: int = 0
    parse_errors: int = 0
    connection_errors: int = 0
    reconnects: int = 0
    last_update_ts: int = 0


class FeedError(Exception):
    """Raised when a feed transport fails."""

    pass


def get_current_time_ms() -> int:
    """Get current time in milliseconds."""
    return int(time.time() * 1000)


class PriceFeedBase(ABC):
    """
    Abstract base class for live price feeds.

    Provides:
    - Standardized callback system
    - Throttled state updates
    - Reconnect scheduling
    - Health monitoring

    Subclasses must implement:
    - connect(): Open the transport (no-op if one is already live)
    - cancel(): Abort the transport and any pending reconnect
    """

    def __init__(
        self,
        feed_name: str,
        symbol: str,
        throttle_ms: int = 250,
        clock: Optional[Callable[[], int]] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        """
        Initialize the feed.

        Args:
            feed_name: Name of the price source (e.g., "binance")
            symbol: Symbol to track, in the source's own format
            throttle_ms: Minimum spacing between accepted updates
            clock: Returns "now" in epoch ms (defaults to wall clock)
            timer_factory: Builds reconnect timers, threading.Timer signature
        """
        self.feed_name = feed_name
        self.symbol = symbol
        self.throttle_ms = throttle_ms
        self._clock = clock or get_current_time_ms
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._running = False
        self._state = FeedState()
        self._last_accepted_ms: Optional[int] = None
        self._timer: Optional[threading.Timer] = None

        self._callbacks: List[Callable[[PricePoint], None]] = []

        self.stats = FeedStats()

    @abstractmethod
    def connect(self) -> None:
        """Open the transport."""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Abort the transport and any scheduled reconnect."""
        pass

    # =========================================================================
    # Signal view
    # =========================================================================

    @property
    def state(self) -> FeedState:
        with self._lock:
            return self._state

    @property
    def price_data(self) -> Optional[PricePoint]:
        return self.state.price_data

    @property
    def is_connected(self) -> bool:
        return self.state.is_connected

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, callback: Callable[[PricePoint], None]) -> None:
        """
        Subscribe to accepted price updates.

        Args:
            callback: Function that takes PricePoint as argument
        """
        self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[PricePoint], None]) -> None:
        """Remove a previously subscribed callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # =========================================================================
    # Helpers for subclasses
    # =========================================================================

    def _update_state(self, **changes) -> None:
        with self._lock:
            values = {
                "price_data": self._state.price_data,
                "is_connected": self._state.is_connected,
                "error": self._state.error,
                "exhausted": self._state.exhausted,
            }
            values.update(changes)
            self._state = FeedState(**values)

    def _accept(self, point: PricePoint) -> bool:
        """
        Apply the throttle and publish a parsed price point.

        The first point in a throttle window wins; later ones in the same
        window are dropped.

        Returns:
            True if the point was published
        """
        now = self._clock()
        with self._lock:
            if (
                self._last_accepted_ms is not None
                and now - self._last_accepted_ms < self.throttle_ms
            ):
                self.stats.updates_throttled += 1
                return False
            self._last_accepted_ms = now
            self.stats.updates_received += 1
            self.stats.last_update_ts = now
            self._update_state(price_data=point)

        for callback in list(self._callbacks):
            try:
                callback(point)
            except Exception:
                logger.exception(f"{self.feed_name}: Callback error")
        return True

    def _record_parse_error(self, raw: object) -> None:
        self.stats.parse_errors += 1
        logger.debug(f"{self.feed_name}: Dropped malformed message: {raw!r}")

    def _schedule(self, delay_s: float, fn: Callable[[], None]) -> None:
        """Run fn once after delay_s on a daemon timer."""
        with self._lock:
            self._cancel_timer()
            timer = self._timer_factory(delay_s, fn)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    # =========================================================================
    # Health
    # =========================================================================

    def is_healthy(self, max_age_seconds: int = 10) -> bool:
        """
        Check if feed is healthy.

        Args:
            max_age_seconds: Max time since last accepted update

        Returns:
            True if feed is connected and receiving updates
        """
        if not self._running or not self.is_connected:
            return False

        age_seconds = (self._clock() - self.stats.last_update_ts) / 1000.0
        return age_seconds < max_age_seconds

    def get_stats(self) -> Dict:
        """Get feed statistics."""
        state = self.state
        now_ms = self._clock()
        age = (now_ms - self.stats.last_update_ts) / 1000.0 if self.stats.last_update_ts else 0

        return {
            "feed": self.feed_name,
            "symbol": self.symbol,
            "running": self._running,
            "connected": state.is_connected,
            "healthy": self.is_healthy(),
            "error": state.error,
            "exhausted": state.exhausted,
            "updates_received": self.stats.updates_received,
            "updates_throttled": self.stats.updates_throttled,
            "parse_errors": self.stats.parse_errors,
            "connection_errors": self.stats.connection_errors,
            "reconnects": self.stats.reconnects,
            "seconds_since_update": age,
            "price": state.price_data.price if state.price_data else None,
        }

    def __repr__(self) -> str:
        status = "connected" if self.is_connected else "disconnected"
        return f"<{self.__class__.__name__} symbol={self.symbol} status={status}>"
