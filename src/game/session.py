"""
Game Session

Wires one price feed to the chart engine and the staking state machine:

    feed -> buffer -> smoother -> grid -> box events -> staking

Feed callbacks only append to the buffer. Everything time-derived is
recomputed in tick(), in dependency order, under one lock, so a frame never
mixes a fresh buffer with a stale smoothed price.

Activated cells settle their pending stake as won, expired cells as lost.
Payouts land when finish_settle() is called (by the presentation layer once
its settlement animation ends), or automatically after ``settle_delay_ms``
when one is configured.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .. import config
from ..chart.buffer import PriceBuffer
from ..chart.clock import AnimationClock
from ..chart.events import BoxEvent, BoxEventEngine
from ..chart.grid import GridBox, GridEngine, box_index_for_price, time_index
from ..chart.smoother import CenterPriceSmoother
from ..feeds.base import FeedState, PriceFeedBase, PricePoint
from ..staking.base import InvalidStakeError, Stake, StakeStatus
from ..staking.engine import StakingEngine

logger = logging.getLogger(__name__)


@dataclass
class GameConfig:
    """
    Session parameters.

    Attributes:
        price_step: Price distance between grid lines.
        time_interval_ms: Width of one time column.
        time_window_ms: Time span across the viewport.
        smoothing_ms: Center price smoothing time constant.
        max_points: Price buffer capacity.
        width: Viewport width in pixels.
        height: Viewport height in pixels.
        settle_delay_ms: Auto-finish settlements after this delay; None leaves
            finishing to the caller.
    """

    price_step: float = 200.0
    time_interval_ms: int = 5000
    time_window_ms: int = 25000
    smoothing_ms: float = 500.0
    max_points: int = 100
    width: float = 800.0
    height: float = 300.0
    settle_delay_ms: Optional[int] = None

    @classmethod
    def from_env(cls) -> "GameConfig":
        """Build a config from the environment-backed settings module."""
        return cls(
            price_step=config.PRICE_STEP,
            time_interval_ms=config.TIME_INTERVAL_MS,
            time_window_ms=config.TIME_WINDOW_SECONDS * 1000,
            smoothing_ms=config.SMOOTHING_MS,
            max_points=config.MAX_POINTS,
            settle_delay_ms=config.SETTLE_DELAY_MS,
        )


@dataclass(frozen=True)
class Frame:
    """Everything a renderer needs for one tick."""

    time: int
    center_price: Optional[float]
    live_price: Optional[float]
    boxes: list[GridBox] = field(default_factory=list)
    events: list[BoxEvent] = field(default_factory=list)
    feed_state: FeedState = field(default_factory=FeedState)


class GameSession:
    """
    One chart session: a feed, its derived grid, and a wallet.

    Example:
        session = GameSession(BinanceTradeFeed("btcusdt"))
        session.start()
        frame = session.tick()
        session.place_stake(frame.boxes[0].key, amount=10)
        session.stop()
    """

    def __init__(
        self,
        feed: PriceFeedBase,
        staking: Optional[StakingEngine] = None,
        game_config: Optional[GameConfig] = None,
        clock: Optional[AnimationClock] = None,
    ) -> None:
        self.config = game_config or GameConfig()
        self.feed = feed
        self.staking = staking or StakingEngine()
        self.clock = clock or AnimationClock()

        self.buffer = PriceBuffer(max_points=self.config.max_points)
        self.smoother = CenterPriceSmoother(smoothing_ms=self.config.smoothing_ms)
        self.grid = GridEngine(
            price_step=self.config.price_step,
            time_interval_ms=self.config.time_interval_ms,
            time_window_ms=self.config.time_window_ms,
        )
        self.box_events = BoxEventEngine(
            price_step=self.config.price_step,
            on_box_activated=self._on_box_activated,
            on_box_expired=self._on_box_expired,
        )

        self._lock = threading.RLock()
        self._now = 0
        self._settle_due: dict[str, int] = {}
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Subscribe to the feed and connect it."""
        if self._started:
            return
        self._started = True
        self.feed.subscribe(self._on_price)
        self.feed.connect()
        logger.info(f"Session started on {self.feed.feed_name}:{self.feed.symbol}")

    def stop(self) -> None:
        """Cancel the feed and stop the clock."""
        self.clock.stop()
        if not self._started:
            return
        self._started = False
        self.feed.unsubscribe(self._on_price)
        self.feed.cancel()
        logger.info("Session stopped")

    def switch_feed(self, feed: PriceFeedBase) -> None:
        """
        Replace the price series.

        The old feed is fully cancelled before the new one connects, and all
        cell identities from the old series are forgotten. Stakes already
        settling keep their scheduled finish.
        """
        was_started = self._started
        if was_started:
            self.stop()

        with self._lock:
            self.box_events.reset()
            self.buffer.clear()
            self.smoother.reset()
            self.feed = feed
        logger.info(f"Switched feed to {feed.feed_name}:{feed.symbol}")
        if was_started:
            self.start()

    # =========================================================================
    # Frame computation
    # =========================================================================

    def _on_price(self, point: PricePoint) -> None:
        with self._lock:
            self.buffer.add_point(point.price, point.time)

    def tick(self, now: Optional[int] = None) -> Frame:
        """Recompute smoother, grid and box lifecycle for one frame."""
        if now is None:
            now = self.clock.now()

        with self._lock:
            self._now = now
            latest = self.buffer.latest
            center_price = self.smoother.update_from_buffer(self.buffer, now)

            boxes: list[GridBox] = []
            events: list[BoxEvent] = []
            if center_price is not None and latest is not None:
                boxes = self.grid.compute_boxes(
                    self.config.width, self.config.height, center_price, now
                )
                events = self.box_events.process_boxes(
                    boxes,
                    latest.price,
                    current_time_index=time_index(now, self.config.time_interval_ms),
                )

            self._finish_due_settlements(now)

            return Frame(
                time=now,
                center_price=center_price,
                live_price=latest.price if latest else None,
                boxes=boxes,
                events=events,
                feed_state=self.feed.state,
            )

    def run(
        self,
        duration_s: Optional[float] = None,
        on_frame: Optional[Callable[[Frame], None]] = None,
    ) -> None:
        """Drive ticks from the animation clock until stopped or ``duration_s`` elapses."""
        self.start()
        started_at: Optional[int] = None
        try:
            for now in self.clock.ticks():
                if started_at is None:
                    started_at = now
                frame = self.tick(now)
                if on_frame is not None:
                    on_frame(frame)
                if duration_s is not None and now - started_at >= duration_s * 1000:
                    break
        finally:
            self.stop()

    # =========================================================================
    # Staking
    # =========================================================================

    def reference_price_index(self) -> Optional[int]:
        """Index of the cell containing the live price."""
        latest = self.buffer.latest
        if latest is None:
            return None
        return box_index_for_price(latest.price, self.config.price_step)

    def place_stake(self, box_key: str, amount: float) -> Optional[Stake]:
        """
        Stake on a cell with odds relative to the live price.

        Raises:
            InvalidStakeError: If no price has arrived yet.
            InsufficientBalanceError: If amount exceeds the balance.
        """
        with self._lock:
            reference = self.reference_price_index()
            if reference is None:
                raise InvalidStakeError("No live price yet")
            return self.staking.create_stake(box_key, amount, reference)

    def finish_settle(self, box_key: str) -> Optional[Stake]:
        with self._lock:
            self._settle_due.pop(box_key, None)
            return self.staking.finish_settle(box_key)

    def _on_box_activated(self, box: GridBox) -> None:
        self._settle_box(box, won=True)

    def _on_box_expired(self, box: GridBox) -> None:
        self._settle_box(box, won=False)

    def _settle_box(self, box: GridBox, won: bool) -> None:
        stake = self.staking.get_stake(box.key)
        if stake is None or stake.status is not StakeStatus.PENDING:
            return
        self.staking.settle(box.key, won)
        if self.config.settle_delay_ms is not None:
            self._settle_due[box.key] = self._now + self.config.settle_delay_ms

    def _finish_due_settlements(self, now: int) -> None:
        due = [key for key, at in self._settle_due.items() if at <= now]
        for key in due:
            del self._settle_due[key]
            self.staking.finish_settle(key)
