"""
State stores for couponmint.

A store persists the engine state after every committed operation:
phase, price, royalty config, authority, coupon signer, issued count,
collected proceeds and the append-only splitter registry.

Treasury balances (record escrows and identity accounts) are kept by the
same store. A state save may carry account balances that change with it,
so that moving collected proceeds into an account is one write.

Implementations must be:
- Consistent (a save is all-or-nothing)
- Append-only for the registry (records are never rewritten)
"""

import copy
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from .splitter import SplitterRecord
from .state import IssuanceConfig, IssuanceState, Phase


class StateStore(ABC):
    """Abstract interface for persisting engine state."""

    @abstractmethod
    def load(self) -> Optional[IssuanceState]:
        """Return the last saved state, or None if nothing was saved yet."""
        pass

    @abstractmethod
    def save(self, state: IssuanceState, accounts: Optional[Dict[str, int]] = None) -> None:
        """Persist a committed state, and any account balances given, atomically."""
        pass

    @abstractmethod
    def load_balances(self) -> Tuple[Dict[int, int], Dict[str, int]]:
        """Return (escrow by record index, balance by identity)."""
        pass

    @abstractmethod
    def save_balances(self, escrow: Dict[int, int], accounts: Dict[str, int]) -> None:
        """Upsert changed balances atomically."""
        pass


class InMemoryStateStore(StateStore):
    """
    In-memory store for development/testing.

    Not persistent across restarts.
    """

    def __init__(self):
        self._state: Optional[IssuanceState] = None
        self._escrow: Dict[int, int] = {}
        self._accounts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def load(self) -> Optional[IssuanceState]:
        with self._lock:
            return copy.deepcopy(self._state)

    def save(self, state: IssuanceState, accounts: Optional[Dict[str, int]] = None) -> None:
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._state = snapshot
            self._accounts.update(accounts or {})

    def load_balances(self) -> Tuple[Dict[int, int], Dict[str, int]]:
        with self._lock:
            return dict(self._escrow), dict(self._accounts)

    def save_balances(self, escrow: Dict[int, int], accounts: Dict[str, int]) -> None:
        with self._lock:
            self._escrow.update(escrow)
            self._accounts.update(accounts)


class SqliteStateStore(StateStore):
    """
    SQLite-backed store.

    Integers are stored as TEXT because prices and balances routinely exceed
    SQLite's 64-bit INTEGER range.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        if str(path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._init_schema()

    @contextmanager
    def _transaction(self):
        """Commit on success, roll back on failure."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS engine_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                phase INTEGER NOT NULL,
                unit_price TEXT NOT NULL,
                royalty_receiver TEXT NOT NULL,
                royalty_basis_points INTEGER NOT NULL,
                authority TEXT NOT NULL,
                coupon_signer TEXT NOT NULL,
                total_issued INTEGER NOT NULL,
                collected TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS splitters (
                idx INTEGER PRIMARY KEY,
                unit_id INTEGER NOT NULL UNIQUE,
                primary_beneficiary TEXT NOT NULL,
                secondary_beneficiary TEXT NOT NULL,
                secondary_cut_basis_points INTEGER NOT NULL
            );""")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                kind TEXT NOT NULL CHECK (kind IN ('escrow', 'account')),
                holder TEXT NOT NULL,
                amount TEXT NOT NULL,
                PRIMARY KEY (kind, holder)
            );""")

    def load(self) -> Optional[IssuanceState]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM engine_state WHERE id = 1").fetchone()
            if row is None:
                return None
            rows = self._conn.execute(
                "SELECT * FROM splitters ORDER BY idx ASC"
            ).fetchall()

        records = [
            SplitterRecord(
                index=r["idx"],
                unit_id=r["unit_id"],
                primary_beneficiary=r["primary_beneficiary"],
                secondary_beneficiary=r["secondary_beneficiary"],
                secondary_cut_basis_points=r["secondary_cut_basis_points"],
            )
            for r in rows
        ]
        return IssuanceState(
            phase=Phase(row["phase"]),
            config=IssuanceConfig(
                unit_price=int(row["unit_price"]),
                royalty_receiver=row["royalty_receiver"],
                royalty_basis_points=row["royalty_basis_points"],
            ),
            authority=row["authority"],
            coupon_signer=row["coupon_signer"],
            total_issued=row["total_issued"],
            collected=int(row["collected"]),
            records=records,
            unit_records={rec.unit_id: rec.index for rec in records},
        )

    def save(self, state: IssuanceState, accounts: Optional[Dict[str, int]] = None) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO engine_state(id, phase, unit_price, royalty_receiver, "
                "royalty_basis_points, authority, coupon_signer, total_issued, collected) "
                "VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    int(state.phase),
                    str(state.config.unit_price),
                    state.config.royalty_receiver,
                    state.config.royalty_basis_points,
                    state.authority,
                    state.coupon_signer,
                    state.total_issued,
                    str(state.collected),
                ),
            )
            stored = conn.execute("SELECT COUNT(*) FROM splitters").fetchone()[0]
            conn.executemany(
                "INSERT INTO splitters(idx, unit_id, primary_beneficiary, secondary_beneficiary, "
                "secondary_cut_basis_points) VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        rec.index,
                        rec.unit_id,
                        rec.primary_beneficiary,
                        rec.secondary_beneficiary,
                        rec.secondary_cut_basis_points,
                    )
                    for rec in state.records[stored:]
                ],
            )
            self._upsert_balances(conn, {}, accounts or {})

    def load_balances(self) -> Tuple[Dict[int, int], Dict[str, int]]:
        with self._lock:
            rows = self._conn.execute("SELECT kind, holder, amount FROM balances").fetchall()
        escrow = {int(r["holder"]): int(r["amount"]) for r in rows if r["kind"] == "escrow"}
        accounts = {r["holder"]: int(r["amount"]) for r in rows if r["kind"] == "account"}
        return escrow, accounts

    def save_balances(self, escrow: Dict[int, int], accounts: Dict[str, int]) -> None:
        with self._transaction() as conn:
            self._upsert_balances(conn, escrow, accounts)

    @staticmethod
    def _upsert_balances(conn, escrow: Dict[int, int], accounts: Dict[str, int]) -> None:
        rows = [("escrow", str(index), str(amount)) for index, amount in escrow.items()]
        rows += [("account", holder, str(amount)) for holder, amount in accounts.items()]
        conn.executemany(
            "INSERT OR REPLACE INTO balances(kind, holder, amount) VALUES (?, ?, ?)", rows
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
