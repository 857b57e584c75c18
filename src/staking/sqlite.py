"""
SQLite-backed stake store.

Persists the wallet and stakes across restarts. Every unit of work runs in a
``BEGIN IMMEDIATE`` transaction so the debit/insert and credit/transition
pairs land together or not at all. A locked database is retried with
exponential backoff; since nothing was committed, the whole unit is re-run.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .base import Stake, StakeNotFoundError, StakeStatus, StakeStore, StakeTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry configuration
MAX_RETRY_ATTEMPTS = 5
RETRY_MIN_WAIT = 0.05  # seconds
RETRY_MAX_WAIT = 1.0  # seconds

# Seconds sqlite itself waits on a lock before raising
BUSY_TIMEOUT = 5.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS wallet (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    balance REAL NOT NULL CHECK (balance >= 0)
);

CREATE TABLE IF NOT EXISTS stakes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    box_key TEXT NOT NULL UNIQUE,
    amount REAL NOT NULL CHECK (amount > 0),
    multiplier REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);
"""

_STAKE_COLUMNS = "id, box_key, amount, multiplier, status, created_at"


def _is_locked(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _row_to_stake(row: sqlite3.Row) -> Stake:
    return Stake(
        id=row["id"],
        box_key=row["box_key"],
        amount=row["amount"],
        multiplier=row["multiplier"],
        status=StakeStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class _SqliteTransaction(StakeTransaction):
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_balance(self) -> float:
        row = self.conn.execute("SELECT balance FROM wallet WHERE id = 1").fetchone()
        return row["balance"]

    def set_balance(self, balance: float) -> None:
        self.conn.execute("UPDATE wallet SET balance = ? WHERE id = 1", (balance,))

    def get_stake(self, box_key: str) -> Optional[Stake]:
        row = self.conn.execute(
            f"SELECT {_STAKE_COLUMNS} FROM stakes WHERE box_key = ?", (box_key,)
        ).fetchone()
        return _row_to_stake(row) if row else None

    def insert_stake(self, box_key: str, amount: float, multiplier: float) -> Stake:
        stake = Stake(id=0, box_key=box_key, amount=amount, multiplier=multiplier)
        cursor = self.conn.execute(
            "INSERT INTO stakes (box_key, amount, multiplier, status, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (box_key, amount, multiplier, stake.status.value, stake.created_at.isoformat()),
        )
        stake.id = cursor.lastrowid
        return stake

    def update_status(self, box_key: str, status: StakeStatus) -> Stake:
        cursor = self.conn.execute(
            "UPDATE stakes SET status = ? WHERE box_key = ?", (status.value, box_key)
        )
        if cursor.rowcount == 0:
            raise StakeNotFoundError(f"No stake for box {box_key}")
        return self.get_stake(box_key)

    def list_stakes(self) -> list[Stake]:
        rows = self.conn.execute(f"SELECT {_STAKE_COLUMNS} FROM stakes ORDER BY id").fetchall()
        return [_row_to_stake(row) for row in rows]

    def clear_stakes(self) -> None:
        self.conn.execute("DELETE FROM stakes")


class SqliteStakeStore(StakeStore):
    """
    Stake store persisted in an SQLite file.

    AUTOINCREMENT keeps stake ids monotonic across clear_stakes(). The wallet
    row is seeded with ``initial_balance`` only when the file is new.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        initial_balance: float = 100.0,
        busy_timeout: float = BUSY_TIMEOUT,
    ) -> None:
        super().__init__(initial_balance)
        self._name = "sqlite"
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.initialize()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections in autocommit mode."""
        conn = sqlite3.connect(
            str(self.db_path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and seed the wallet row."""
        with self.get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.execute(
                "INSERT OR IGNORE INTO wallet (id, balance) VALUES (1, ?)",
                (self.initial_balance,),
            )
        logger.info(f"Stake database initialized: {self.db_path}")

    @retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=RETRY_MIN_WAIT, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
        retry=retry_if_exception(_is_locked),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def run_atomic(self, fn: Callable[[StakeTransaction], T]) -> T:
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = fn(_SqliteTransaction(conn))
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result
