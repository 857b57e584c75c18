"""Configuration management for the price grid game."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

# =============================================================================
# GRID CONFIGURATION
# =============================================================================

# Price distance between horizontal grid lines
PRICE_STEP = float(os.getenv("PRICE_STEP", "200"))

# Width of one time column (ms)
TIME_INTERVAL_MS = int(os.getenv("TIME_INTERVAL_MS", "5000"))

# Time span shown across the chart (seconds)
TIME_WINDOW_SECONDS = int(os.getenv("TIME_WINDOW_SECONDS", "25"))

# Center price smoothing time constant (ms)
SMOOTHING_MS = float(os.getenv("SMOOTHING_MS", "500"))

# Price points kept in the chart buffer
MAX_POINTS = int(os.getenv("MAX_POINTS", "100"))

# Frames per second for the headless animation clock
FPS = float(os.getenv("FPS", "30"))

# =============================================================================
# PRICE FEEDS
# =============================================================================

# Feed to use by default: "binance" or "pyth"
FEED = os.getenv("FEED", "binance")

# Minimum spacing between accepted price updates (ms)
THROTTLE_MS = int(os.getenv("THROTTLE_MS", "250"))

BINANCE_WS_URL = os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws")
BINANCE_SYMBOL = os.getenv("BINANCE_SYMBOL", "btcusdt")
BINANCE_RECONNECT_DELAY = float(os.getenv("BINANCE_RECONNECT_DELAY", "2.0"))

PYTH_STREAMING_URL = os.getenv(
    "PYTH_STREAMING_URL",
    "https://benchmarks.pyth.network/v1/shims/tradingview/streaming",
)
PYTH_SYMBOL = os.getenv("PYTH_SYMBOL", "Crypto.BTC/USD")
PYTH_MAX_RETRIES = int(os.getenv("PYTH_MAX_RETRIES", "3"))
PYTH_RETRY_DELAY = float(os.getenv("PYTH_RETRY_DELAY", "3.0"))

# =============================================================================
# STAKING
# =============================================================================

INITIAL_BALANCE = float(os.getenv("INITIAL_BALANCE", "100"))

# SQLite file for stakes; empty keeps everything in memory
STAKE_DB_PATH = os.getenv("STAKE_DB_PATH", "")

# JSONL stake event log; empty disables it
STAKE_LOG_PATH = os.getenv("STAKE_LOG_PATH", "")

# Delay between a stake's outcome and its payout in headless runs (ms)
SETTLE_DELAY_MS = int(os.getenv("SETTLE_DELAY_MS", "1000"))
