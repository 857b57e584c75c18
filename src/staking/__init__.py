"""
Staking for the price grid game.

This module provides the wager state machine and its storage backends:
- StakingEngine: Wallet + stake state machine (create, settle, finish, reset)
- StakeStore: Abstract atomic storage interface
- MemoryStakeStore: In-process store used when no database is configured
- SqliteStakeStore: SQLite-persisted store

Usage:
    from src.staking import StakingEngine, SqliteStakeStore

    engine = StakingEngine(SqliteStakeStore("data/stakes.db"))
    stake = engine.create_stake("486:345678", amount=10, current_price_index=485)
"""

from .base import (
    InsufficientBalanceError,
    InvalidStakeError,
    InvalidStakeStateError,
    Stake,
    StakeNotFoundError,
    StakeStatus,
    StakeStore,
    StakeTransaction,
    StakingError,
    WalletState,
)
from .engine import StakingEngine, calc_multiplier
from .memory import MemoryStakeStore
from .sqlite import SqliteStakeStore

__all__ = [
    # Base classes and types
    "StakeStore",
    "StakeTransaction",
    "Stake",
    "StakeStatus",
    "WalletState",
    # Exceptions
    "StakingError",
    "InsufficientBalanceError",
    "InvalidStakeError",
    "StakeNotFoundError",
    "InvalidStakeStateError",
    # Implementations
    "StakingEngine",
    "MemoryStakeStore",
    "SqliteStakeStore",
    "calc_multiplier",
]
