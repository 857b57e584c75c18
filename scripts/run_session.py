#!/usr/bin/env python3
"""
Run a Headless Price Grid Session

Connects a live price feed, drives the grid engine from the animation clock,
and logs cell activations, expirations and stake settlements.

Usage:
    # Binance BTC/USDT trade stream (default)
    python scripts/run_session.py

    # Pyth streaming feed
    python scripts/run_session.py --feed pyth --symbol Crypto.ETH/USD

    # Run for 2 minutes, staking 5 on the live price's cell two columns ahead
    python scripts/run_session.py --duration 120 --auto-stake 5

    # Persist the wallet in SQLite
    python scripts/run_session.py --db data/stakes.db --auto-stake 5

    # Show wallet state and exit
    python scripts/run_session.py --db data/stakes.db --status

    # Reset the wallet and exit
    python scripts/run_session.py --db data/stakes.db --reset

Environment Variables:
    FEED - "binance" (default) or "pyth"
    PRICE_STEP, TIME_INTERVAL_MS, TIME_WINDOW_SECONDS - grid geometry
    STAKE_DB_PATH - SQLite file (empty = in-memory wallet)
    STAKE_LOG_PATH - JSONL stake event log (empty = disabled)
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.chart.grid import box_key, time_index
from src.config import (
    BINANCE_RECONNECT_DELAY,
    BINANCE_SYMBOL,
    BINANCE_WS_URL,
    FEED,
    FPS,
    INITIAL_BALANCE,
    LOGS_DIR,
    PYTH_MAX_RETRIES,
    PYTH_RETRY_DELAY,
    PYTH_STREAMING_URL,
    PYTH_SYMBOL,
    STAKE_DB_PATH,
    STAKE_LOG_PATH,
    THROTTLE_MS,
)
from src.chart.clock import AnimationClock
from src.feeds import BinanceTradeFeed, PriceFeedBase, PythStreamFeed
from src.game import Frame, GameConfig, GameSession
from src.staking import (
    InsufficientBalanceError,
    MemoryStakeStore,
    SqliteStakeStore,
    StakingEngine,
)

logger = logging.getLogger("run_session")

STAKE_COLUMNS_AHEAD = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the session."""
    level = logging.DEBUG if verbose else logging.INFO

    # Create formatters
    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    # File handler
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOGS_DIR / f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("websocket").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def build_feed(name: str, symbol: str = "") -> PriceFeedBase:
    """Create the configured price feed."""
    if name == "pyth":
        return PythStreamFeed(
            symbol=symbol or PYTH_SYMBOL,
            throttle_ms=THROTTLE_MS,
            max_retries=PYTH_MAX_RETRIES,
            retry_delay=PYTH_RETRY_DELAY,
            streaming_url=PYTH_STREAMING_URL,
        )
    return BinanceTradeFeed(
        symbol=symbol or BINANCE_SYMBOL,
        throttle_ms=THROTTLE_MS,
        reconnect_delay=BINANCE_RECONNECT_DELAY,
        ws_base_url=BINANCE_WS_URL,
    )


def build_staking(db_path: str) -> StakingEngine:
    """Create the staking engine over SQLite or memory."""
    if db_path:
        store = SqliteStakeStore(db_path, initial_balance=INITIAL_BALANCE)
    else:
        store = MemoryStakeStore(initial_balance=INITIAL_BALANCE)
    return StakingEngine(
        store=store,
        log_events=bool(STAKE_LOG_PATH),
        log_path=STAKE_LOG_PATH or "data/stake_events.jsonl",
    )


def show_status(staking: StakingEngine) -> None:
    """Print the wallet state."""
    state = staking.get_wallet_state()

    print("\n" + "=" * 70)
    print("Wallet Status")
    print("=" * 70)
    print(f"\nStore: {staking.store.name}")
    print(f"Balance: {state.balance:.2f}")
    print(f"Stakes: {len(state.stakes)}")

    for stake in state.stakes[-20:]:
        print(
            f"  #{stake.id:<5} {stake.box_key:<16} {stake.amount:>8.2f} "
            f"@ {stake.multiplier:.1f}x  {stake.status}"
        )

    print("\n" + "=" * 70)


class AutoStaker:
    """Stakes once per column on the live price's cell a few columns ahead."""

    def __init__(self, session: GameSession, amount: float) -> None:
        self.session = session
        self.amount = amount
        self._last_column = None

    def __call__(self, frame: Frame) -> None:
        if frame.live_price is None:
            return

        column = time_index(frame.time, self.session.config.time_interval_ms)
        if column == self._last_column:
            return
        self._last_column = column

        reference = self.session.reference_price_index()
        key = box_key(reference, column + STAKE_COLUMNS_AHEAD)
        try:
            self.session.place_stake(key, self.amount)
        except InsufficientBalanceError as e:
            logger.warning(f"Auto-stake skipped: {e}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run a headless price grid session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_session.py                         # Binance BTC/USDT
  python scripts/run_session.py --feed pyth             # Pyth BTC/USD
  python scripts/run_session.py --auto-stake 5          # Stake 5 per column
  python scripts/run_session.py --db data/stakes.db --status
        """,
    )

    # Mode arguments
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--status",
        action="store_true",
        help="Show wallet state and exit",
    )
    mode_group.add_argument(
        "--reset",
        action="store_true",
        help="Clear all stakes, restore the initial balance and exit",
    )

    # Configuration arguments
    parser.add_argument(
        "--feed",
        choices=["binance", "pyth"],
        default=FEED,
        help=f"Price feed (default: {FEED})",
    )
    parser.add_argument(
        "--symbol",
        default="",
        help="Feed symbol (default: per-feed setting)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        metavar="SECONDS",
        help="How long to run (0 = unlimited, default: 0)",
    )
    parser.add_argument(
        "--auto-stake",
        type=float,
        default=0,
        metavar="AMOUNT",
        help="Stake AMOUNT once per column (default: off)",
    )
    parser.add_argument(
        "--db",
        default=STAKE_DB_PATH,
        metavar="PATH",
        help="SQLite stake database (default: in-memory)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    staking = build_staking(args.db)

    if args.status:
        show_status(staking)
        return

    if args.reset:
        staking.reset()
        show_status(staking)
        return

    setup_logging(verbose=args.verbose)

    session = GameSession(
        build_feed(args.feed, args.symbol),
        staking=staking,
        game_config=GameConfig.from_env(),
        clock=AnimationClock(fps=FPS),
    )

    on_frame = AutoStaker(session, args.auto_stake) if args.auto_stake > 0 else None

    try:
        session.run(duration_s=args.duration or None, on_frame=on_frame)
    except KeyboardInterrupt:
        print("\nInterrupted")
    finally:
        show_status(staking)


if __name__ == "__main__":
    main()
