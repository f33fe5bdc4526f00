# src/crossvest/database/ledger_store.py
from __future__ import annotations

"""
Persistent ledger storage using SQLite.

Each ledger is stored as one JSON document keyed by a ledger id. The
``transaction`` context manager holds an exclusive SQLite lock while a
ledger is loaded, mutated and written back, so two processes driving the
same ledger file cannot interleave their operations.
"""

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from ..contracts.vesting_ledger import TransferHook, VestingLedger
from ..core.ledger_exceptions import CorruptedStateError, StorageError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class LedgerStore:
    """
    Stores serialized ``VestingLedger`` documents in a SQLite database.

    Args:
        db_path: Path to the database file, or ``":memory:"``. Parent
            directories are created if they do not exist.
        time_provider: Clock handed to every loaded ledger
        transfer_hook: Payout hook handed to every loaded ledger
    """

    def __init__(
        self,
        db_path: Path | str,
        time_provider: Callable[[], int] | None = None,
        transfer_hook: TransferHook | None = None,
    ):
        self.db_path = str(db_path)
        self.time_provider = time_provider
        self.transfer_hook = transfer_hook
        self._lock = threading.RLock()
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level="EXCLUSIVE"
            )
            if self.db_path != MEMORY_DB:
                self._conn.execute("PRAGMA journal_mode=WAL;")
                self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._create_table()
        except sqlite3.Error as e:
            raise StorageError(
                f"Database connection failed: {e}", details={"db_path": self.db_path}
            ) from e

    def _create_table(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ledgers (
                    ledger_id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

    # ==================== Reads ====================

    def exists(self, ledger_id: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM ledgers WHERE ledger_id = ?", (ledger_id,)
            ).fetchone()
            return row is not None

    def list_ledgers(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute("SELECT ledger_id FROM ledgers ORDER BY ledger_id").fetchall()
            return [row[0] for row in rows]

    def load(self, ledger_id: str) -> VestingLedger:
        """
        Load a ledger by id.

        Raises:
            StorageError: If no ledger with this id exists
            CorruptedStateError: If the stored document cannot be decoded
        """
        with self._lock:
            return self._load(ledger_id)

    def _load(self, ledger_id: str) -> VestingLedger:
        try:
            row = self._conn.execute(
                "SELECT state FROM ledgers WHERE ledger_id = ?", (ledger_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read ledger '{ledger_id}': {e}") from e
        if row is None:
            raise StorageError(f"Unknown ledger '{ledger_id}'", details={"ledger_id": ledger_id})

        try:
            data = json.loads(row[0])
        except json.JSONDecodeError as e:
            raise CorruptedStateError(
                f"Stored ledger '{ledger_id}' is not valid JSON",
                details={"ledger_id": ledger_id},
            ) from e
        return VestingLedger.from_dict(
            data, time_provider=self.time_provider, transfer_hook=self.transfer_hook
        )

    # ==================== Writes ====================

    def create(self, ledger_id: str, ledger: VestingLedger) -> None:
        """
        Store a new ledger.

        Raises:
            StorageError: If a ledger with this id already exists
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO ledgers (ledger_id, state, updated_at) VALUES (?, ?, ?)",
                        (ledger_id, self._encode(ledger), time.time()),
                    )
            except sqlite3.IntegrityError as e:
                raise StorageError(
                    f"Ledger '{ledger_id}' already exists", details={"ledger_id": ledger_id}
                ) from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to create ledger '{ledger_id}': {e}") from e
        logger.info("Ledger stored", extra={"event": "store.create", "ledger_id": ledger_id})

    def save(self, ledger_id: str, ledger: VestingLedger) -> None:
        """Insert or overwrite the stored document for ``ledger_id``."""
        with self._lock:
            try:
                with self._conn:
                    self._write(ledger_id, ledger)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to save ledger '{ledger_id}': {e}") from e
        logger.debug("Ledger saved", extra={"event": "store.save", "ledger_id": ledger_id})

    @contextmanager
    def transaction(self, ledger_id: str) -> Iterator[VestingLedger]:
        """
        Load ``ledger_id`` under an exclusive lock and write it back on success.

        Nothing is written if the block raises.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN EXCLUSIVE")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to lock ledger store: {e}") from e
            try:
                ledger = self._load(ledger_id)
                yield ledger
                self._write(ledger_id, ledger)
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(f"Failed to save ledger '{ledger_id}': {e}") from e
            except BaseException:
                self._conn.rollback()
                raise
            self._conn.commit()

    def _write(self, ledger_id: str, ledger: VestingLedger) -> None:
        self._conn.execute(
            """
            INSERT INTO ledgers (ledger_id, state, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(ledger_id) DO UPDATE SET
                state = excluded.state,
                updated_at = excluded.updated_at
            """,
            (ledger_id, self._encode(ledger), time.time()),
        )

    @staticmethod
    def _encode(ledger: VestingLedger) -> str:
        # Amounts can exceed 64 bits; JSON integers carry them exactly
        return json.dumps(ledger.to_dict(), sort_keys=True)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
