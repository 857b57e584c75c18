"""
Abstract staking storage interface.

This module defines the core abstractions for wagers on grid cells: stake
statuses, stake and wallet records, the staking exception hierarchy, and the
atomic storage interface that every stake store must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class StakeStatus(Enum):
    """Stake status enumeration."""

    PENDING = "pending"
    SETTLING_WON = "settling-won"
    SETTLING_LOST = "settling-lost"
    WON = "won"
    LOST = "lost"

    def __str__(self) -> str:
        return self.value

    @property
    def is_settling(self) -> bool:
        return self in (StakeStatus.SETTLING_WON, StakeStatus.SETTLING_LOST)

    @property
    def is_final(self) -> bool:
        return self in (StakeStatus.WON, StakeStatus.LOST)


@dataclass
class Stake:
    """
    Represents a wager on one grid cell.

    Attributes:
        id: Monotonic identifier, unique within the store.
        box_key: Cell identity, "<price_index>:<time_index>".
        amount: Wagered amount, debited at creation.
        multiplier: Payout odds fixed at creation.
        status: Current settlement status.
        created_at: Creation timestamp.
    """

    id: int
    box_key: str
    amount: float
    multiplier: float
    status: StakeStatus = StakeStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def payout(self) -> float:
        """Amount credited if the stake wins."""
        return self.amount * self.multiplier

    @property
    def is_open(self) -> bool:
        """Check if the stake still awaits its final outcome."""
        return not self.status.is_final

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "box_key": self.box_key,
            "amount": self.amount,
            "multiplier": self.multiplier,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class WalletState:
    """
    Full staking state.

    Attributes:
        balance: Available balance.
        stakes: All stakes, ordered by id.
    """

    balance: float
    stakes: list[Stake] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "stakes": [stake.to_dict() for stake in self.stakes],
        }


class StakingError(Exception):
    """Base exception for staking errors."""

    pass


class InsufficientBalanceError(StakingError):
    """Raised when the balance cannot cover a stake."""

    pass


class InvalidStakeError(StakingError):
    """Raised when stake parameters are invalid."""

    pass


class StakeNotFoundError(StakingError):
    """Raised when no stake exists for a box key."""

    pass


class InvalidStakeStateError(StakingError):
    """Raised when a transition is not allowed from the stake's status."""

    pass


class StakeTransaction(ABC):
    """
    Operations available inside one atomic store unit.

    Either every change made through a transaction is applied or none is.
    """

    @abstractmethod
    def get_balance(self) -> float:
        pass

    @abstractmethod
    def set_balance(self, balance: float) -> None:
        pass

    @abstractmethod
    def get_stake(self, box_key: str) -> Optional[Stake]:
        pass

    @abstractmethod
    def insert_stake(self, box_key: str, amount: float, multiplier: float) -> Stake:
        """Insert a pending stake and return it with its assigned id."""
        pass

    @abstractmethod
    def update_status(self, box_key: str, status: StakeStatus) -> Stake:
        pass

    @abstractmethod
    def list_stakes(self) -> list[Stake]:
        pass

    @abstractmethod
    def clear_stakes(self) -> None:
        pass


class StakeStore(ABC):
    """
    Abstract base class for stake storage backends.

    Attributes:
        name: Backend identifier.
        initial_balance: Balance restored on reset.
    """

    def __init__(self, initial_balance: float = 100.0) -> None:
        if initial_balance < 0:
            raise ValueError(f"initial_balance must be >= 0, got {initial_balance}")
        self.initial_balance = float(initial_balance)
        self._name = "base"

    @property
    def name(self) -> str:
        return self._name

    @abstractmethod
    def run_atomic(self, fn: Callable[[StakeTransaction], T]) -> T:
        """
        Run ``fn`` against a transaction as one atomic unit.

        If ``fn`` raises, no change it made is kept and the exception
        propagates.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} initial_balance={self.initial_balance}>"
