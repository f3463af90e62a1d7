"""
couponmint

Signed-coupon authorization and phase-gated issuance with per-unit
proceeds splitting.

- An off-chain authority signs coupons that pre-approve a participant for a
  category of access. Verification recovers the signer from the signature
  and compares it with the configured coupon signer; no list of participants
  is kept.
- The issuance engine enforces phase, price and supply at issuance time and
  creates one immutable splitter record per issued unit. Each record splits
  whatever is later deposited to it 75/25 between the authority and the
  issuing participant.

Usage:
    from couponmint import (
        Category,
        CouponSigner,
        IssuanceEngine,
        Phase,
    )

    signer = CouponSigner(private_key_hex)
    engine = IssuanceEngine(authority=signer.identity)

    # Pre-sale with a coupon
    engine.set_phase(signer.identity, Phase.PRE_SALE)
    coupon = signer.issue(Category.CONTRIBUTOR, buyer)
    engine.issue_with_coupon(1, engine.price, buyer, Category.CONTRIBUTOR, coupon)

    # Public sale
    engine.set_phase(signer.identity, Phase.PUBLIC_SALE)
    indices = engine.issue(2, engine.price * 2, buyer)

    # Proceeds of a unit
    engine.deposit(indices[0], 1000)
    payout = engine.withdraw(indices[0])   # 750 to the authority, 250 to buyer
"""

__version__ = "1.0.0"

# Identities
from .identity import (
    normalize_identity,
    identity_bytes,
    require_identity,
    ZERO_IDENTITY,
)

# Codec
from .codec import Category, encode, encode_layout, parse_category

# Signing
from .signing import (
    Coupon,
    CouponSigner,
    Signature,
    generate_signing_key,
    identity_of,
    load_signing_key,
    recover,
    sign,
    sign_coupon,
    verify,
)

# Splitting
from .splitter import Payout, SplitterRecord, Treasury, split_amount

# Engine
from .state import IssuanceConfig, IssuanceState, Phase
from .engine import IssuanceEngine, PhaseChanged
from .store import InMemoryStateStore, SqliteStateStore, StateStore

# Errors
from .errors import (
    CouponMintError,
    ErrorCode,
    InsufficientPayment,
    InvalidAmount,
    InvalidBasisPoints,
    InvalidCategory,
    InvalidCoupon,
    InvalidIdentity,
    InvalidPhase,
    InvalidPrice,
    InvalidQuantity,
    NotFound,
    RecoveryFailure,
    TransferFailed,
    Unauthorized,
    WrongPhase,
)


__all__ = [
    "__version__",

    # Identities
    "normalize_identity",
    "identity_bytes",
    "require_identity",
    "ZERO_IDENTITY",

    # Codec
    "Category",
    "encode",
    "encode_layout",
    "parse_category",

    # Signing
    "Coupon",
    "CouponSigner",
    "Signature",
    "generate_signing_key",
    "identity_of",
    "load_signing_key",
    "recover",
    "sign",
    "sign_coupon",
    "verify",

    # Splitting
    "Payout",
    "SplitterRecord",
    "Treasury",
    "split_amount",

    # Engine
    "IssuanceConfig",
    "IssuanceState",
    "Phase",
    "IssuanceEngine",
    "PhaseChanged",
    "InMemoryStateStore",
    "SqliteStateStore",
    "StateStore",

    # Errors
    "CouponMintError",
    "ErrorCode",
    "InsufficientPayment",
    "InvalidAmount",
    "InvalidBasisPoints",
    "InvalidCategory",
    "InvalidCoupon",
    "InvalidIdentity",
    "InvalidPhase",
    "InvalidPrice",
    "InvalidQuantity",
    "NotFound",
    "RecoveryFailure",
    "TransferFailed",
    "Unauthorized",
    "WrongPhase",
]
