"""
Wager State Machine.

Ties grid cell outcomes to a virtual wallet. Each stake moves through:

    pending --(activated)--> settling-won  --(finish)--> won   (credit payout)
    pending --(expired)----> settling-lost --(finish)--> lost  (no change)

The win/lose decision is made by the box lifecycle engine via settle(); the
economic effect lands only in finish_settle(), which the presentation layer
calls once its settlement animation completes.

Features:
- Atomic debit + insert on create, atomic credit + transition on finish
- Idempotent finish_settle (a final stake is never credited twice)
- One stake per box key
- Works unchanged over any StakeStore (in-memory or SQLite)
- Change subscription for presentation layers
- Optional stake event log to JSONL file
"""

import json
import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from ..chart.grid import parse_box_key
from .base import (
    InsufficientBalanceError,
    InvalidStakeError,
    InvalidStakeStateError,
    Stake,
    StakeNotFoundError,
    StakeStatus,
    StakeStore,
    StakeTransaction,
    WalletState,
)
from .memory import MemoryStakeStore

logger = logging.getLogger(__name__)

BASE_MULTIPLIER = 1.5
MULTIPLIER_PER_STEP = 0.5


def calc_multiplier(box_price_index: int, current_price_index: int) -> float:
    """
    Payout odds for a cell, growing with distance from the reference price.

    Example:
        >>> calc_multiplier(10, 8)
        2.5
    """
    distance = abs(box_price_index - current_price_index)
    return BASE_MULTIPLIER + distance * MULTIPLIER_PER_STEP


class StakingEngine:
    """
    Wallet and stake state machine.

    Attributes:
        store: Storage backend shared by every operation.
        log_events: Whether to append stake events to ``log_path``.
        log_path: JSONL event log path.
    """

    def __init__(
        self,
        store: Optional[StakeStore] = None,
        initial_balance: float = 100.0,
        log_events: bool = False,
        log_path: Union[str, Path] = "data/stake_events.jsonl",
    ) -> None:
        """
        Initialize the staking engine.

        Args:
            store: Storage backend. Defaults to a MemoryStakeStore.
            initial_balance: Starting balance for the default store.
            log_events: Whether to log stake events to a JSONL file.
            log_path: Path to the event log.
        """
        self.store = store or MemoryStakeStore(initial_balance=initial_balance)
        self.log_events = log_events
        self.log_path = Path(log_path)
        self._listeners: list[Callable[[WalletState], None]] = []

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def initial_balance(self) -> float:
        return self.store.initial_balance

    @property
    def balance(self) -> float:
        return self.store.run_atomic(lambda tx: tx.get_balance())

    def get_stake(self, box_key: str) -> Optional[Stake]:
        return self.store.run_atomic(lambda tx: tx.get_stake(box_key))

    def get_stakes(self) -> list[Stake]:
        return self.store.run_atomic(lambda tx: tx.list_stakes())

    def get_stakes_by_box_key(self) -> dict[str, Stake]:
        return {stake.box_key: stake for stake in self.get_stakes()}

    def get_pending_stakes(self) -> list[Stake]:
        return [s for s in self.get_stakes() if s.status is StakeStatus.PENDING]

    def get_settling_stakes(self) -> list[Stake]:
        return [s for s in self.get_stakes() if s.status.is_settling]

    def get_wallet_state(self) -> WalletState:
        """Full-state read of balance and stakes in one consistent snapshot."""
        return self.store.run_atomic(
            lambda tx: WalletState(balance=tx.get_balance(), stakes=tx.list_stakes())
        )

    def subscribe(self, callback: Callable[[WalletState], None]) -> None:
        """Call ``callback`` with the new wallet state after every change."""
        self._listeners.append(callback)

    # =========================================================================
    # Transitions
    # =========================================================================

    def create_stake(
        self,
        box_key: str,
        amount: float,
        current_price_index: int,
    ) -> Optional[Stake]:
        """
        Place a stake on a cell.

        Args:
            box_key: Target cell, "<price_index>:<time_index>".
            amount: Amount to wager. Debited immediately.
            current_price_index: Reference price index at wager time.

        Returns:
            The new pending stake, or None if the cell already has a stake.

        Raises:
            InvalidStakeError: If amount is not a positive finite number or the key
                is malformed.
            InsufficientBalanceError: If amount exceeds the balance.
        """
        if not math.isfinite(amount) or amount <= 0:
            raise InvalidStakeError(f"Stake amount must be positive and finite, got {amount}")
        try:
            box_price_index, _ = parse_box_key(box_key)
        except ValueError as e:
            raise InvalidStakeError(str(e)) from e

        multiplier = calc_multiplier(box_price_index, current_price_index)

        def _create(tx: StakeTransaction) -> Optional[Stake]:
            if tx.get_stake(box_key) is not None:
                return None
            balance = tx.get_balance()
            if amount > balance:
                raise InsufficientBalanceError(
                    f"Insufficient balance: need {amount}, have {balance}"
                )
            tx.set_balance(balance - amount)
            return tx.insert_stake(box_key, amount, multiplier)

        stake = self.store.run_atomic(_create)
        if stake is None:
            logger.debug(f"Stake already exists for box {box_key}")
            return None

        logger.info(f"Stake #{stake.id} on {box_key}: {amount} @ {multiplier}x")
        self._log_event("STAKE_CREATED", stake.to_dict())
        self._notify()
        return stake

    def settle(self, box_key: str, won: bool) -> Stake:
        """
        Record the outcome of a pending stake without moving money.

        Raises:
            StakeNotFoundError: If the cell has no stake.
            InvalidStakeStateError: If the stake is not pending.
        """
        new_status = StakeStatus.SETTLING_WON if won else StakeStatus.SETTLING_LOST

        def _settle(tx: StakeTransaction) -> Stake:
            stake = tx.get_stake(box_key)
            if stake is None:
                raise StakeNotFoundError(f"No stake for box {box_key}")
            if stake.status is not StakeStatus.PENDING:
                raise InvalidStakeStateError(
                    f"Stake on {box_key} is {stake.status}, expected pending"
                )
            return tx.update_status(box_key, new_status)

        stake = self.store.run_atomic(_settle)
        logger.info(f"Stake #{stake.id} on {box_key} {stake.status}")
        self._log_event("STAKE_SETTLING", stake.to_dict())
        self._notify()
        return stake

    def finish_settle(self, box_key: str) -> Optional[Stake]:
        """
        Apply a settling stake's outcome. The only path that credits the wallet.

        Returns:
            The finalized stake, or None if the stake was not settling
            (already final or still pending).

        Raises:
            StakeNotFoundError: If the cell has no stake.
        """

        def _finish(tx: StakeTransaction) -> Optional[Stake]:
            stake = tx.get_stake(box_key)
            if stake is None:
                raise StakeNotFoundError(f"No stake for box {box_key}")

            if stake.status is StakeStatus.SETTLING_WON:
                tx.set_balance(tx.get_balance() + stake.payout)
                return tx.update_status(box_key, StakeStatus.WON)
            if stake.status is StakeStatus.SETTLING_LOST:
                return tx.update_status(box_key, StakeStatus.LOST)
            return None

        stake = self.store.run_atomic(_finish)
        if stake is None:
            return None

        if stake.status is StakeStatus.WON:
            logger.info(f"Stake #{stake.id} on {box_key} won {stake.payout:.2f}")
        else:
            logger.info(f"Stake #{stake.id} on {box_key} lost {stake.amount:.2f}")
        self._log_event("STAKE_FINISHED", {**stake.to_dict(), "payout": stake.payout})
        self._notify()
        return stake

    def reset(self) -> None:
        """Clear all stakes and restore the initial balance."""
        initial = self.store.initial_balance

        def _reset(tx: StakeTransaction) -> None:
            tx.clear_stakes()
            tx.set_balance(initial)

        self.store.run_atomic(_reset)
        logger.info(f"Wallet reset to {initial}")
        self._log_event("RESET", {"balance": initial})
        self._notify()

    # =========================================================================
    # Internal
    # =========================================================================

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.get_wallet_state()
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("Wallet listener failed")

    def _log_event(self, event: str, data: dict[str, Any]) -> None:
        """Log an event to file."""
        if self.log_events:
            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": event,
                **data,
            }
            self._write_to_log(entry)

    def _write_to_log(self, data: dict[str, Any]) -> None:
        """Write data to log file."""
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(data) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write to stake log: {e}")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} store={self.store.name}>"
