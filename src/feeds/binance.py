"""
Binance WebSocket Trade Feed

Push-socket price feed for a single Binance spot symbol. Subscribes to the
raw trade stream and publishes one throttled PricePoint per window.
"""
import json
import logging
import math
import threading
from typing import Callable, Optional

import websocket

from .base import PriceFeedBase, PricePoint

logger = logging.getLogger(__name__)

WS_BASE_URL = "wss://stream.binance.com:9443/ws"
DEFAULT_RECONNECT_DELAY = 2.0  # seconds


def normalize_symbol(symbol: str) -> str:
    """
    Return a Binance stream symbol.

    Examples: ``BTC/USDT`` -> ``btcusdt``, ``BTC-USDT`` -> ``btcusdt``.
    """
    return symbol.lower().replace("/", "").replace("-", "").strip()


class BinanceTradeFeed(PriceFeedBase):
    """
    Real-time trade feed from Binance.

    Holds at most one live socket. A closed socket (including one closed by an
    error) is replaced automatically after ``reconnect_delay`` seconds until
    cancel() is called.

    Example:
        feed = BinanceTradeFeed("btcusdt")

        def on_price(point: PricePoint):
            print(f"{point.price:.2f} @ {point.time}")

        feed.subscribe(on_price)
        feed.connect()

        # Later
        feed.cancel()
    """

    def __init__(
        self,
        symbol: str = "btcusdt",
        throttle_ms: int = 250,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        ws_base_url: str = WS_BASE_URL,
        ws_factory: Callable[..., websocket.WebSocketApp] = websocket.WebSocketApp,
        **kwargs,
    ):
        """
        Initialize the feed.

        Args:
            symbol: Binance symbol, e.g. "btcusdt" or "BTC/USDT"
            throttle_ms: Minimum spacing between accepted updates
            reconnect_delay: Seconds to wait after a close before reconnecting
            ws_base_url: Stream endpoint base URL
            ws_factory: Builds the socket app (WebSocketApp signature)
        """
        super().__init__("binance", normalize_symbol(symbol), throttle_ms, **kwargs)
        self.reconnect_delay = reconnect_delay
        self.ws_base_url = ws_base_url.rstrip("/")
        self._ws_factory = ws_factory

        self.ws: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._blocking = False

    @property
    def url(self) -> str:
        return f"{self.ws_base_url}/{self.symbol}@trade"

    def connect(self, blocking: bool = False) -> None:
        """
        Open the trade stream.

        No-op while a socket is open or opening.

        Args:
            blocking: If True, run in current thread. If False, run in background.
        """
        with self._lock:
            if self.ws is not None:
                return

            self._running = True
            self._blocking = blocking
            ws = self._ws_factory(
                self.url,
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            self.ws = ws

        logger.info(f"{self.feed_name}: Connecting to {self.url}")

        if blocking:
            ws.run_forever()
        else:
            self._thread = threading.Thread(target=ws.run_forever, daemon=True)
            self._thread.start()

    def cancel(self) -> None:
        """Close the socket and drop any pending reconnect."""
        with self._lock:
            self._running = False
            self._cancel_timer()
            ws, self.ws = self.ws, None
            self._update_state(is_connected=False)

        if ws is not None:
            ws.close()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)
        self._thread = None

        logger.info(f"{self.feed_name}: Feed stopped")

    def _reconnect(self) -> None:
        if not self._running:
            return
        self.stats.reconnects += 1
        logger.info(f"{self.feed_name}: Reconnecting (attempt {self.stats.reconnects})")
        self.connect(blocking=self._blocking)

    # =========================================================================
    # Socket callbacks
    # =========================================================================

    def _on_open(self, ws) -> None:
        if ws is not self.ws:
            return
        self._update_state(is_connected=True, error=None)
        logger.info(f"{self.feed_name}: Connected to {self.symbol} trade stream")

    def _on_message(self, ws, message) -> None:
        if ws is not self.ws:
            return

        try:
            data = json.loads(message)
            point = PricePoint(price=float(data["p"]), time=int(data["T"]))
            if not math.isfinite(point.price):
                raise ValueError(f"Non-finite price: {point.price}")
        except (ValueError, TypeError, KeyError, OverflowError):
            self._record_parse_error(message)
            return

        self._accept(point)

    def _on_error(self, ws, error) -> None:
        if ws is not self.ws:
            return
        self.stats.connection_errors += 1
        self._update_state(is_connected=False, error=f"WebSocket error: {error}")
        logger.warning(f"{self.feed_name}: WebSocket error: {error}")

    def _on_close(self, ws, close_status_code, close_msg) -> None:
        with self._lock:
            if ws is not self.ws:
                return
            self.ws = None
            self._update_state(is_connected=False)
            running = self._running

        logger.info(f"{self.feed_name}: WebSocket closed: {close_status_code} - {close_msg}")

        if running:
            logger.info(f"{self.feed_name}: Reconnecting in {self.reconnect_delay}s...")
            self._schedule(self.reconnect_delay, self._reconnect)
