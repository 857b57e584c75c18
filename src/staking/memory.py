"""
In-memory stake store.

Used when no persistence backend is configured. Honors the same atomicity
guarantees as the SQLite store: each unit runs against a private working copy
that replaces the live state only when the unit returns.
"""

import threading
from dataclasses import replace
from typing import Callable, Optional, TypeVar

from .base import Stake, StakeNotFoundError, StakeStatus, StakeStore, StakeTransaction

T = TypeVar("T")


class _MemoryTransaction(StakeTransaction):
    def __init__(self, balance: float, stakes: dict[str, Stake], next_id: int) -> None:
        self.balance = balance
        self.stakes = stakes
        self.next_id = next_id

    def get_balance(self) -> float:
        return self.balance

    def set_balance(self, balance: float) -> None:
        self.balance = balance

    def get_stake(self, box_key: str) -> Optional[Stake]:
        stake = self.stakes.get(box_key)
        return replace(stake) if stake else None

    def insert_stake(self, box_key: str, amount: float, multiplier: float) -> Stake:
        self.next_id += 1
        stake = Stake(id=self.next_id, box_key=box_key, amount=amount, multiplier=multiplier)
        self.stakes[box_key] = stake
        return replace(stake)

    def update_status(self, box_key: str, status: StakeStatus) -> Stake:
        stake = self.stakes.get(box_key)
        if stake is None:
            raise StakeNotFoundError(f"No stake for box {box_key}")
        updated = replace(stake, status=status)
        self.stakes[box_key] = updated
        return replace(updated)

    def list_stakes(self) -> list[Stake]:
        return [replace(s) for s in sorted(self.stakes.values(), key=lambda s: s.id)]

    def clear_stakes(self) -> None:
        self.stakes.clear()


class MemoryStakeStore(StakeStore):
    """
    Stake store kept in process memory.

    Stake ids keep increasing across clear_stakes() so they stay unique for
    the store's lifetime.
    """

    def __init__(self, initial_balance: float = 100.0) -> None:
        super().__init__(initial_balance)
        self._name = "memory"

        self._lock = threading.RLock()
        self._balance = self.initial_balance
        self._stakes: dict[str, Stake] = {}
        self._next_id = 0

    def run_atomic(self, fn: Callable[[StakeTransaction], T]) -> T:
        with self._lock:
            tx = _MemoryTransaction(self._balance, dict(self._stakes), self._next_id)
            result = fn(tx)

            self._balance = tx.balance
            self._stakes = tx.stakes
            self._next_id = tx.next_id
            return result
