"""
couponmint Issuance Engine

The phase/price/supply state machine.

    LOCKED <-> PRE_SALE <-> PUBLIC_SALE    (authority moves freely between any two)

On every successful issuance the engine creates one immutable SplitterRecord
per unit, appends it to the registry and maps the unit to it. It is the sole
mutator of phase, price and royalty configuration.

Every mutating operation runs as a transaction under one lock: it works on a
copy of the state, and the copy is committed (persisted, swapped in) only
after every check passed. A rejected call leaves state exactly as it was.
Phase listeners are notified after the commit, with the lock released, so a
listener may call back into the engine.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .codec import Category, encode, parse_category
from .errors import (
    CouponMintError,
    InsufficientPayment,
    InvalidAmount,
    InvalidBasisPoints,
    InvalidCoupon,
    InvalidIdentity,
    InvalidPrice,
    InvalidQuantity,
    NotFound,
    Unauthorized,
    WrongPhase,
)
from .identity import IdentityLike, normalize_identity, require_identity
from .logging_config import audit_log
from .signing import Coupon, Signature, verify
from .splitter import BASIS_POINTS, SECONDARY_CUT_BASIS_POINTS, Payout, SplitterRecord, Treasury
from .state import IssuanceConfig, IssuanceState, Phase, parse_phase
from .store import InMemoryStateStore, StateStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUPPLY = 10000
DEFAULT_UNIT_PRICE = 80_000_000_000_000_000
DEFAULT_ROYALTY_BASIS_POINTS = 1000
MAX_ROYALTY_BASIS_POINTS = 1000

CouponLike = Union[Coupon, Signature, Dict[str, Any]]


@dataclass(frozen=True)
class PhaseChanged:
    """Notification emitted when the authority changes the phase."""
    previous: Phase
    current: Phase
    caller: str


Listener = Callable[[PhaseChanged], None]


def _require_int(value: Any, error, name: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise error(f"{name} must be an integer >= {minimum}", **{name: repr(value)})
    return value


class IssuanceEngine:
    """
    Phase-gated issuance with per-unit proceeds splitting.

    Usage:
        engine = IssuanceEngine(authority="0xaa...")
        engine.set_phase(authority, Phase.PUBLIC_SALE)
        indices = engine.issue(2, engine.price * 2, buyer)
        receiver, amount = engine.royalty_info(indices[0], sale_price)
    """

    def __init__(
        self,
        authority: IdentityLike,
        coupon_signer: Optional[IdentityLike] = None,
        max_supply: int = DEFAULT_MAX_SUPPLY,
        max_per_issue: Optional[int] = None,
        unit_price: int = DEFAULT_UNIT_PRICE,
        royalty_basis_points: int = DEFAULT_ROYALTY_BASIS_POINTS,
        store: Optional[StateStore] = None,
        treasury: Optional[Treasury] = None,
        listeners: Optional[List[Listener]] = None,
    ):
        self.max_supply = _require_int(max_supply, InvalidQuantity, "max_supply", minimum=1)
        if max_per_issue is not None:
            _require_int(max_per_issue, InvalidQuantity, "max_per_issue", minimum=1)
        self.max_per_issue = max_per_issue

        self._lock = threading.RLock()
        self._listeners: List[Listener] = list(listeners or [])
        self.store = store or InMemoryStateStore()
        self.treasury = treasury or Treasury(self._lock, store=self.store)

        state = self.store.load()
        if state is None:
            authority = require_identity(authority, "authority")
            _require_int(unit_price, InvalidPrice, "unit_price")
            _check_royalty_bps(royalty_basis_points)
            state = IssuanceState(
                phase=Phase.LOCKED,
                config=IssuanceConfig(
                    unit_price=unit_price,
                    royalty_receiver=authority,
                    royalty_basis_points=royalty_basis_points,
                ),
                authority=authority,
                coupon_signer=require_identity(coupon_signer or authority, "coupon signer"),
            )
            self.store.save(state)
        else:
            logger.info("resuming engine state: %d unit(s) issued", state.total_issued)
        self._state = state

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def _transaction(self):
        """
        Yield (working_state, accounts).

        The body may stage treasury account balances in accounts. On normal
        exit the state and the staged balances are saved together, then both
        are swapped in. On any exception nothing is committed.
        """
        with self._lock:
            working = self._state.copy()
            accounts: Dict[str, int] = {}
            yield working, accounts
            self.store.save(working, accounts=accounts)
            self.treasury.apply_accounts(accounts)
            self._state = working

    def _notify(self, event: PhaseChanged) -> None:
        """Deliver event to listeners. Runs after commit, outside any transaction."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    def _require_authority(self, caller: IdentityLike, operation: str) -> str:
        """Canonical caller identity. Anything but the authority, malformed input included, is Unauthorized."""
        try:
            identity = normalize_identity(caller)
        except InvalidIdentity:
            identity = repr(caller)
        if identity != self._state.authority:
            audit_log.security_event(
                "unauthorized_call", severity="medium", caller=identity, operation=operation
            )
            raise Unauthorized(f"{operation} is restricted to the authority", caller=identity)
        return identity

    def subscribe(self, listener: Listener) -> None:
        """Register a callable invoked with every PhaseChanged notification."""
        with self._lock:
            self._listeners.append(listener)

    # =========================================================================
    # Authority-gated configuration
    # =========================================================================

    def set_phase(self, caller: IdentityLike, new_phase: Any) -> Phase:
        """Move to any phase. Returns the prior phase."""
        with self._transaction() as (state, _):
            caller = self._require_authority(caller, "set_phase")
            phase = parse_phase(new_phase)
            previous = state.phase
            state.phase = phase

        audit_log.phase_changed(previous.name, phase.name, caller)
        self._notify(PhaseChanged(previous=previous, current=phase, caller=caller))
        return previous

    def set_price(self, caller: IdentityLike, new_price: int) -> None:
        with self._transaction() as (state, _):
            caller = self._require_authority(caller, "set_price")
            _require_int(new_price, InvalidPrice, "price")
            previous = state.config.unit_price
            state.config = IssuanceConfig(
                unit_price=new_price,
                royalty_receiver=state.config.royalty_receiver,
                royalty_basis_points=state.config.royalty_basis_points,
            )

        audit_log.price_changed(previous, new_price, caller)

    def set_royalty(self, caller: IdentityLike, receiver: IdentityLike, basis_points: int) -> None:
        """Replace the global royalty configuration. basis_points is capped at 1000 (10%)."""
        with self._transaction() as (state, _):
            caller = self._require_authority(caller, "set_royalty")
            _check_royalty_bps(basis_points)
            receiver = require_identity(receiver, "royalty receiver")
            state.config = IssuanceConfig(
                unit_price=state.config.unit_price,
                royalty_receiver=receiver,
                royalty_basis_points=basis_points,
            )

        audit_log.royalty_changed(receiver, basis_points, caller)

    def transfer_authority(self, caller: IdentityLike, new_authority: IdentityLike) -> str:
        """
        Hand the authority role to another identity. Returns the previous authority.

        Records created afterwards name the new authority as primary
        beneficiary; existing records are immutable and keep theirs.
        """
        with self._transaction() as (state, _):
            caller = self._require_authority(caller, "transfer_authority")
            state.authority = require_identity(new_authority, "authority")

        audit_log.authority_changed("authority", caller, state.authority)
        return caller

    def set_coupon_signer(self, caller: IdentityLike, signer: IdentityLike) -> None:
        with self._transaction() as (state, _):
            self._require_authority(caller, "set_coupon_signer")
            previous = state.coupon_signer
            state.coupon_signer = require_identity(signer, "coupon signer")

        audit_log.authority_changed("coupon_signer", previous, state.coupon_signer)

    # =========================================================================
    # Issuance
    # =========================================================================

    def issue(self, quantity: int, payment_offered: int, caller: IdentityLike) -> List[int]:
        """
        Public-sale issuance.

        Returns the indices of the new splitter records; a unit's id equals
        the index of its record.
        """
        caller = require_identity(caller, "caller")
        try:
            with self._transaction() as (state, _):
                if state.phase != Phase.PUBLIC_SALE:
                    raise WrongPhase(
                        "issuance requires the public sale phase", phase=state.phase.name
                    )
                indices = self._allocate(state, quantity, payment_offered, caller)
        except CouponMintError as e:
            audit_log.issuance_rejected(caller, e.code.value, quantity)
            raise

        audit_log.units_issued(caller, indices, payment_offered)
        return indices

    def issue_with_coupon(
        self,
        quantity: int,
        payment_offered: int,
        caller: IdentityLike,
        category: Union[int, Category],
        coupon: CouponLike,
    ) -> List[int]:
        """
        Pre-sale issuance for a participant holding a coupon signed by the
        coupon signer for (category, caller).

        Single use of a coupon is not enforced here.
        """
        caller = require_identity(caller, "caller")
        try:
            with self._transaction() as (state, _):
                if state.phase != Phase.PRE_SALE:
                    raise WrongPhase(
                        "coupon issuance requires the pre-sale phase", phase=state.phase.name
                    )
                category = parse_category(category)
                if not self.verify_coupon(category, caller, coupon):
                    raise InvalidCoupon(
                        "coupon was not issued to this caller for this category",
                        caller=caller,
                        category=category.name,
                    )
                indices = self._allocate(state, quantity, payment_offered, caller)
        except CouponMintError as e:
            audit_log.issuance_rejected(caller, e.code.value, quantity)
            raise

        audit_log.units_issued(caller, indices, payment_offered, category=category.name)
        return indices

    def _allocate(
        self, state: IssuanceState, quantity: int, payment_offered: int, caller: str
    ) -> List[int]:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity("quantity must be at least 1", quantity=repr(quantity))
        if self.max_per_issue is not None and quantity > self.max_per_issue:
            raise InvalidQuantity(
                f"at most {self.max_per_issue} unit(s) per issuance", quantity=quantity
            )
        if state.total_issued + quantity > self.max_supply:
            raise InvalidQuantity(
                f"only {self.max_supply - state.total_issued} unit(s) left",
                quantity=quantity,
            )
        _require_int(payment_offered, InvalidAmount, "payment")

        required = state.config.unit_price * quantity
        if payment_offered < required:
            raise InsufficientPayment(
                f"payment {payment_offered} is below {required}",
                required=required,
                offered=payment_offered,
            )

        indices = []
        for _ in range(quantity):
            index = len(state.records)
            unit_id = state.total_issued
            state.records.append(SplitterRecord(
                index=index,
                unit_id=unit_id,
                primary_beneficiary=state.authority,
                secondary_beneficiary=caller,
                secondary_cut_basis_points=SECONDARY_CUT_BASIS_POINTS,
            ))
            state.unit_records[unit_id] = index
            state.total_issued += 1
            indices.append(index)

        # Overpayment is retained, not refunded.
        state.collected += payment_offered
        return indices

    # =========================================================================
    # Coupons
    # =========================================================================

    def verify_coupon(
        self,
        category: Union[int, Category],
        beneficiary: IdentityLike,
        coupon: CouponLike,
    ) -> bool:
        """
        True iff the coupon was signed by the coupon signer for exactly
        (category, beneficiary). Malformed signature material raises
        RecoveryFailure.
        """
        category = parse_category(category)
        beneficiary = normalize_identity(beneficiary)
        digest = encode(category, beneficiary)

        if isinstance(coupon, dict):
            coupon = Coupon.from_dict(coupon, digest=digest)
        if isinstance(coupon, Coupon) and coupon.digest != digest:
            valid = False
        else:
            valid = verify(digest, coupon, self._state.coupon_signer)

        audit_log.coupon_checked(beneficiary, category.name, valid)
        return valid

    # =========================================================================
    # Proceeds
    # =========================================================================

    def deposit(self, index: int, amount: int) -> int:
        """Attribute value to a splitter record. Returns its new balance."""
        with self._lock:
            record = self.get_record(index)
            return self.treasury.deposit(record.index, amount)

    def withdraw(self, index: int) -> Payout:
        """Distribute a record's whole balance to its two beneficiaries, atomically."""
        with self._lock:
            record = self.get_record(index)
            try:
                payout = self.treasury.withdraw(record)
            except CouponMintError as e:
                audit_log.withdrawal_failed(index, e.detail)
                raise

        audit_log.withdrawal(index, payout.balance, payout.primary_amount, payout.secondary_amount)
        return payout

    def withdraw_proceeds(self, caller: IdentityLike) -> int:
        """Pay all collected issuance payments to the authority. Returns the amount."""
        with self._transaction() as (state, accounts):
            caller = self._require_authority(caller, "withdraw_proceeds")
            amount = state.collected
            state.collected = 0
            if amount:
                accounts.update(self.treasury.stage_credit(caller, amount))

        audit_log.proceeds_withdrawn(caller, amount)
        return amount

    # =========================================================================
    # Reads
    # =========================================================================

    def royalty_info(self, unit_id: int, sale_price: int) -> Tuple[str, int]:
        """
        Royalty owed on a sale: (receiver, sale_price * bps // 10000).

        The receiver is the global royalty receiver whatever the unit; it is
        unrelated to the unit's splitter record.
        """
        _require_int(unit_id, NotFound, "unit_id")
        _require_int(sale_price, InvalidAmount, "sale_price")
        config = self._state.config
        return config.royalty_receiver, sale_price * config.royalty_basis_points // BASIS_POINTS

    def get_record(self, index: int) -> SplitterRecord:
        records = self._state.records
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(records):
            raise NotFound(f"no splitter record at index {index}", index=repr(index))
        return records[index]

    def list_records(self) -> List[SplitterRecord]:
        return list(self._state.records)

    def splitter_for(self, unit_id: int) -> SplitterRecord:
        """The splitter record created when unit_id was issued."""
        index = self._state.unit_records.get(unit_id)
        if index is None:
            raise NotFound(f"unit {unit_id} has not been issued", unit_id=repr(unit_id))
        return self._state.records[index]

    def issuer_of(self, unit_id: int) -> str:
        """Identity that issued unit_id (the splitter's secondary beneficiary)."""
        return self.splitter_for(unit_id).secondary_beneficiary

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def price(self) -> int:
        return self._state.config.unit_price

    @property
    def config(self) -> IssuanceConfig:
        return self._state.config

    @property
    def royalty(self) -> Tuple[str, int]:
        config = self._state.config
        return config.royalty_receiver, config.royalty_basis_points

    @property
    def authority(self) -> str:
        return self._state.authority

    @property
    def coupon_signer(self) -> str:
        return self._state.coupon_signer

    @property
    def total_issued(self) -> int:
        return self._state.total_issued

    @property
    def remaining_supply(self) -> int:
        return self.max_supply - self._state.total_issued

    @property
    def collected(self) -> int:
        return self._state.collected

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            d = self._state.summary()
        d["max_supply"] = self.max_supply
        d["max_per_issue"] = self.max_per_issue
        return d


def _check_royalty_bps(basis_points: Any) -> None:
    if (
        isinstance(basis_points, bool)
        or not isinstance(basis_points, int)
        or not 0 <= basis_points <= MAX_ROYALTY_BASIS_POINTS
    ):
        raise InvalidBasisPoints(
            f"royalty must be within [0, {MAX_ROYALTY_BASIS_POINTS}] basis points",
            basis_points=repr(basis_points),
        )
