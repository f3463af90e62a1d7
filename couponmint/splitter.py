"""
couponmint Proceeds Splitting

A SplitterRecord is an immutable two-party, fixed-ratio distribution record.
It owns no mutable fields: the amount owed to each party is computed from
its two fixed beneficiaries and its cut every time a balance is withdrawn.

Balances live in the Treasury:
    - one escrow balance per registry record (funds deposited "to" it)
    - one account balance per identity (funds paid out to it)

Withdrawal is pull-based and atomic. The balance is captured once, both
payout legs are checked, and only then are both applied. A leg that cannot
be delivered aborts the whole withdrawal with the balance untouched.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

from .errors import InvalidAmount, InvalidBasisPoints, TransferFailed
from .identity import IdentityLike, normalize_identity, require_identity

logger = logging.getLogger(__name__)

BASIS_POINTS = 10000
SECONDARY_CUT_BASIS_POINTS = 2500


def split_amount(balance: int, secondary_cut_basis_points: int) -> Tuple[int, int]:
    """
    Split a balance into (primary, secondary).

    secondary = balance * cut // 10000 truncates, so any rounding remainder
    goes to the primary beneficiary.
    """
    secondary = balance * secondary_cut_basis_points // BASIS_POINTS
    return balance - secondary, secondary


@dataclass(frozen=True)
class SplitterRecord:
    """Immutable proceeds-distribution record for one issued unit."""
    index: int
    unit_id: int
    primary_beneficiary: str
    secondary_beneficiary: str
    secondary_cut_basis_points: int = SECONDARY_CUT_BASIS_POINTS

    def __post_init__(self):
        cut = self.secondary_cut_basis_points
        if isinstance(cut, bool) or not isinstance(cut, int) or not 0 <= cut <= BASIS_POINTS:
            raise InvalidBasisPoints(
                f"secondary cut must be within [0, {BASIS_POINTS}]", basis_points=cut
            )
        object.__setattr__(self, "primary_beneficiary",
                           require_identity(self.primary_beneficiary, "primary beneficiary"))
        object.__setattr__(self, "secondary_beneficiary",
                           require_identity(self.secondary_beneficiary, "secondary beneficiary"))

    def split(self, balance: int) -> Tuple[int, int]:
        return split_amount(balance, self.secondary_cut_basis_points)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "unit_id": self.unit_id,
            "primary_beneficiary": self.primary_beneficiary,
            "secondary_beneficiary": self.secondary_beneficiary,
            "secondary_cut_basis_points": self.secondary_cut_basis_points,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SplitterRecord":
        return cls(
            index=int(data["index"]),
            unit_id=int(data["unit_id"]),
            primary_beneficiary=data["primary_beneficiary"],
            secondary_beneficiary=data["secondary_beneficiary"],
            secondary_cut_basis_points=int(data["secondary_cut_basis_points"]),
        )


@dataclass(frozen=True)
class Payout:
    """Result of one withdrawal."""
    index: int
    balance: int
    primary_beneficiary: str
    primary_amount: int
    secondary_beneficiary: str
    secondary_amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "balance": self.balance,
            "primary_beneficiary": self.primary_beneficiary,
            "primary_amount": self.primary_amount,
            "secondary_beneficiary": self.secondary_beneficiary,
            "secondary_amount": self.secondary_amount,
        }


class Treasury:
    """
    Balance keeper for record escrows and identity accounts.

    Thread-safe. Pass the owning engine's lock so that withdrawals and
    issuance are serialized against each other.

    With a store, balances are loaded from it at construction and every
    change is saved to it before it is applied in memory; a failed save
    leaves the treasury untouched. Without one, balances live in memory only.

    A frozen account refuses incoming transfers, which models a receiver
    that rejects funds. Frozen flags are not persisted.
    """

    def __init__(self, lock: Optional[threading.RLock] = None, store=None):
        self._lock = lock or threading.RLock()
        self._store = store
        self._escrow: Dict[int, int] = {}
        self._accounts: Dict[str, int] = {}
        self._frozen: Set[str] = set()
        if store is not None:
            escrow, accounts = store.load_balances()
            self._escrow.update(escrow)
            self._accounts.update(accounts)

    # -- reads --

    def balance_of_record(self, index: int) -> int:
        with self._lock:
            return self._escrow.get(index, 0)

    def balance_of(self, identity: IdentityLike) -> int:
        account = normalize_identity(identity)
        with self._lock:
            return self._accounts.get(account, 0)

    def is_frozen(self, identity: IdentityLike) -> bool:
        with self._lock:
            return normalize_identity(identity) in self._frozen

    # -- writes --

    def deposit(self, index: int, amount: int) -> int:
        """Attribute value to a record. Returns the record's new balance."""
        _require_positive(amount)
        with self._lock:
            balance = self._escrow.get(index, 0) + amount
            self._commit({index: balance}, {})
            return balance

    def stage_credit(self, identity: IdentityLike, amount: int) -> Dict[str, int]:
        """
        Check that identity can receive amount and return the resulting
        account balance as {identity: balance}, without applying it.

        The caller persists the staged balance together with its own state
        and then hands it to apply_accounts.
        """
        _require_positive(amount)
        account = normalize_identity(identity)
        with self._lock:
            if account in self._frozen:
                raise TransferFailed(f"account {account} refuses transfers", receiver=account)
            return {account: self._accounts.get(account, 0) + amount}

    def apply_accounts(self, accounts: Dict[str, int]) -> None:
        """Install account balances that were already persisted."""
        with self._lock:
            self._accounts.update(accounts)

    def credit(self, identity: IdentityLike, amount: int) -> int:
        """Pay value directly into an identity account."""
        with self._lock:
            staged = self.stage_credit(identity, amount)
            self._commit({}, staged)
            return next(iter(staged.values()))

    def freeze(self, identity: IdentityLike) -> None:
        with self._lock:
            self._frozen.add(normalize_identity(identity))

    def unfreeze(self, identity: IdentityLike) -> None:
        with self._lock:
            self._frozen.discard(normalize_identity(identity))

    def withdraw(self, record: SplitterRecord) -> Payout:
        """
        Distribute a record's escrow balance to its two beneficiaries.

        The balance is read once. Both legs are validated before either is
        applied; if one cannot be delivered TransferFailed is raised and the
        escrow and both accounts are left exactly as they were.
        """
        with self._lock:
            balance = self._escrow.get(record.index, 0)
            primary_amount, secondary_amount = record.split(balance)

            accounts: Dict[str, int] = {}
            for receiver, amount in (
                (record.primary_beneficiary, primary_amount),
                (record.secondary_beneficiary, secondary_amount),
            ):
                if not amount:
                    continue
                if receiver in self._frozen:
                    raise TransferFailed(
                        f"account {receiver} refuses transfers",
                        receiver=receiver,
                        index=record.index,
                    )
                # Both legs may pay the same identity.
                accounts[receiver] = accounts.get(receiver, self._accounts.get(receiver, 0)) + amount

            if balance:
                self._commit({record.index: 0}, accounts)

        logger.debug("splitter %d paid %d/%d", record.index, primary_amount, secondary_amount)
        return Payout(
            index=record.index,
            balance=balance,
            primary_beneficiary=record.primary_beneficiary,
            primary_amount=primary_amount,
            secondary_beneficiary=record.secondary_beneficiary,
            secondary_amount=secondary_amount,
        )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "escrow": {i: b for i, b in self._escrow.items() if b},
                "accounts": dict(self._accounts),
            }

    def _commit(self, escrow: Dict[int, int], accounts: Dict[str, int]) -> None:
        """Persist changed balances, then apply them. Caller holds the lock."""
        if self._store is not None:
            self._store.save_balances(escrow, accounts)
        self._escrow.update(escrow)
        self._accounts.update(accounts)


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("amount must be a positive integer", amount=amount)
