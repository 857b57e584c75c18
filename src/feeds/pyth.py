"""
Pyth Streaming Price Feed

Chunked-stream price feed backed by the Pyth benchmarks TradingView shim.
The endpoint keeps one HTTP response open and writes newline-delimited JSON
records for every tracked symbol:

    {"id": "Crypto.BTC/USD", "p": 97012.55, "t": 1735689600}

``t`` is in seconds and is converted to milliseconds.
"""
import codecs
import json
import logging
import math
import threading
from typing import Optional

import requests

from .base import FeedError, PriceFeedBase, PricePoint

logger = logging.getLogger(__name__)

STREAMING_URL = "https://benchmarks.pyth.network/v1/shims/tradingview/streaming"
MAX_RETRIES = 3
RETRY_DELAY = 3.0  # seconds
CONNECT_TIMEOUT = 10.0  # seconds
CHUNK_SIZE = 1024


class PythStreamFeed(PriceFeedBase):
    """
    Streaming price feed from Pyth.

    Each connect() starts a new attempt and aborts the previous one. A stream
    that ends or fails is retried after ``retry_delay`` seconds, at most
    ``max_retries`` times in a row; a successful connect resets the count.
    Once retries are exhausted the feed reports a terminal error and stops.
    """

    def __init__(
        self,
        symbol: str = "Crypto.BTC/USD",
        throttle_ms: int = 250,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        streaming_url: str = STREAMING_URL,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        """
        Initialize the feed.

        Args:
            symbol: Pyth symbol id, e.g. "Crypto.ETH/USD"
            throttle_ms: Minimum spacing between accepted updates
            max_retries: Consecutive failed attempts before giving up
            retry_delay: Seconds between attempts
            streaming_url: Endpoint URL
            session: HTTP session (a new requests.Session by default)
        """
        super().__init__("pyth", symbol, throttle_ms, **kwargs)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.streaming_url = streaming_url
        self.session = session or requests.Session()

        self.retry_count = 0
        self._attempt = 0
        self._response: Optional[requests.Response] = None
        self._thread: Optional[threading.Thread] = None
        self._blocking = False

    def connect(self, blocking: bool = False) -> None:
        """
        Start a new streaming attempt, aborting any in-flight one.

        Args:
            blocking: If True, read the stream in the current thread.
        """
        with self._lock:
            self._running = True
            self._blocking = blocking
            self._attempt += 1
            attempt = self._attempt
            response, self._response = self._response, None

        if response is not None:
            response.close()

        if blocking:
            self._run_attempt(attempt)
        else:
            self._thread = threading.Thread(
                target=self._run_attempt, args=(attempt,), daemon=True
            )
            self._thread.start()

    def cancel(self) -> None:
        """Abort the in-flight request and drop any pending retry."""
        with self._lock:
            self._running = False
            self._attempt += 1
            self._cancel_timer()
            response, self._response = self._response, None
            self._update_state(is_connected=False)

        if response is not None:
            response.close()

        logger.info(f"{self.feed_name}: Feed stopped")

    def _is_current(self, attempt: int) -> bool:
        with self._lock:
            return self._running and attempt == self._attempt

    def _run_attempt(self, attempt: int) -> None:
        """Read one streaming response until it ends, fails or is cancelled."""
        try:
            response = self.session.get(
                self.streaming_url, stream=True, timeout=(CONNECT_TIMEOUT, None)
            )

            with self._lock:
                if not (self._running and attempt == self._attempt):
                    response.close()
                    return
                self._response = response

            if not response.ok:
                raise FeedError(f"HTTP {response.status_code}")

            self.retry_count = 0
            self._update_state(is_connected=True, error=None, exhausted=False)
            logger.info(f"{self.feed_name}: Streaming {self.symbol}")

            self._read_stream(response, attempt)

            if not self._is_current(attempt):
                return

            logger.info(f"{self.feed_name}: Stream ended")
            self._update_state(is_connected=False)
            self._schedule_retry()

        except Exception as e:
            if not self._is_current(attempt):
                return

            self.stats.connection_errors += 1
            self._update_state(is_connected=False, error=str(e))
            logger.warning(f"{self.feed_name}: Stream error: {e}")
            self._schedule_retry()

    def _read_stream(self, response: requests.Response, attempt: int) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if not self._is_current(attempt):
                return
            if not chunk:
                continue

            buffer += decoder.decode(chunk)
            lines = buffer.split("\n")
            buffer = lines.pop()

            for line in lines:
                self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return

        try:
            data = json.loads(line)
            if data.get("id") != self.symbol:
                return
            point = PricePoint(
                price=float(data["p"]),
                time=int(round(float(data["t"]) * 1000)),
            )
            if not math.isfinite(point.price):
                raise ValueError(f"Non-finite price: {point.price}")
        except (ValueError, TypeError, KeyError, AttributeError, OverflowError):
            self._record_parse_error(line)
            return

        self._accept(point)

    def _schedule_retry(self) -> None:
        if self.retry_count >= self.max_retries:
            message = f"Failed after {self.max_retries} retries"
            self._update_state(is_connected=False, error=message, exhausted=True)
            with self._lock:
                self._running = False
            logger.error(f"{self.feed_name}: {message}")
            return

        self.retry_count += 1
        self.stats.reconnects += 1
        logger.info(
            f"{self.feed_name}: Retrying in {self.retry_delay}s "
            f"(attempt {self.retry_count}/{self.max_retries})"
        )
        self._schedule(self.retry_delay, self._retry)

    def _retry(self) -> None:
        if not self._running:
            return
        self.connect(blocking=self._blocking)
