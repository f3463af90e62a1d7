"""
couponmint Engine State

The complete persisted state of an issuance engine. Nothing else in the
core is mutable.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict, List

from .errors import InvalidPhase
from .splitter import SplitterRecord


class Phase(IntEnum):
    """
    Stage of the distribution event.

    Transitions are authority-only and unconstrained: any phase can be
    reached from any other.
    """
    LOCKED = 0
    PRE_SALE = 1
    PUBLIC_SALE = 2


def parse_phase(value: Any) -> Phase:
    """Resolve a phase from its integer value. Anything outside the set raises InvalidPhase."""
    if isinstance(value, Phase):
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPhase(f"phase must be an integer, got {value!r}", phase=repr(value))
    try:
        return Phase(value)
    except ValueError:
        raise InvalidPhase(f"unknown phase: {value}", phase=value) from None


@dataclass(frozen=True)
class IssuanceConfig:
    """Price and royalty configuration. Replaced wholesale, never edited in place."""
    unit_price: int
    royalty_receiver: str
    royalty_basis_points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_price": self.unit_price,
            "royalty_receiver": self.royalty_receiver,
            "royalty_basis_points": self.royalty_basis_points,
        }


@dataclass
class IssuanceState:
    phase: Phase
    config: IssuanceConfig
    authority: str
    coupon_signer: str
    total_issued: int = 0
    collected: int = 0
    records: List[SplitterRecord] = field(default_factory=list)
    unit_records: Dict[int, int] = field(default_factory=dict)

    def copy(self) -> "IssuanceState":
        """Working copy for a transaction. Records are immutable and shared."""
        return replace(self, records=list(self.records), unit_records=dict(self.unit_records))

    def summary(self) -> Dict[str, Any]:
        return {
            "phase": int(self.phase),
            "phase_name": self.phase.name,
            "authority": self.authority,
            "coupon_signer": self.coupon_signer,
            "total_issued": self.total_issued,
            "collected": self.collected,
            **self.config.to_dict(),
        }
