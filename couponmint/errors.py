"""
couponmint Error Taxonomy

Every rejected precondition is reported synchronously with a specific error
kind. Callers can tell an invalid argument from a wrong state or a failed
cryptographic check without parsing messages.
"""

from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    """Stable error codes exposed to collaborators."""
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_PHASE = "INVALID_PHASE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_BASIS_POINTS = "INVALID_BASIS_POINTS"
    INVALID_PRICE = "INVALID_PRICE"
    WRONG_PHASE = "WRONG_PHASE"
    INSUFFICIENT_PAYMENT = "INSUFFICIENT_PAYMENT"
    RECOVERY_FAILURE = "RECOVERY_FAILURE"
    NOT_FOUND = "NOT_FOUND"
    INVALID_IDENTITY = "INVALID_IDENTITY"
    INVALID_CATEGORY = "INVALID_CATEGORY"
    INVALID_COUPON = "INVALID_COUPON"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    UNKNOWN = "UNKNOWN"


class CouponMintError(Exception):
    """Base class for every error raised by couponmint."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, detail: str = "", **context: Any):
        self.detail = detail or self.code.value
        self.context = context
        super().__init__(f"{self.code.value}: {self.detail}")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"error": self.code.value, "detail": self.detail}
        if self.context:
            d["context"] = {k: _jsonable(v) for k, v in self.context.items()}
        return d


def _jsonable(value: Any) -> Any:
    if isinstance(value, int):
        return int(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str) or value is None:
        return value
    return str(value)


class Unauthorized(CouponMintError):
    """Caller lacks authority for a gated operation."""
    code = ErrorCode.UNAUTHORIZED


class InvalidPhase(CouponMintError):
    code = ErrorCode.INVALID_PHASE


class InvalidQuantity(CouponMintError):
    code = ErrorCode.INVALID_QUANTITY


class InvalidBasisPoints(CouponMintError):
    code = ErrorCode.INVALID_BASIS_POINTS


class InvalidPrice(CouponMintError):
    code = ErrorCode.INVALID_PRICE


class WrongPhase(CouponMintError):
    """Operation is valid in principle but not in the current phase."""
    code = ErrorCode.WRONG_PHASE


class InsufficientPayment(CouponMintError):
    code = ErrorCode.INSUFFICIENT_PAYMENT


class RecoveryFailure(CouponMintError):
    """Signature material is malformed; no identity can be recovered."""
    code = ErrorCode.RECOVERY_FAILURE


class NotFound(CouponMintError):
    code = ErrorCode.NOT_FOUND


class InvalidIdentity(CouponMintError):
    code = ErrorCode.INVALID_IDENTITY


class InvalidCategory(CouponMintError):
    code = ErrorCode.INVALID_CATEGORY


class InvalidCoupon(CouponMintError):
    """Coupon is well-formed but was not issued by the coupon signer for this pair."""
    code = ErrorCode.INVALID_COUPON


class InvalidAmount(CouponMintError):
    code = ErrorCode.INVALID_AMOUNT


class TransferFailed(CouponMintError):
    """A payout leg could not be delivered; nothing was transferred."""
    code = ErrorCode.TRANSFER_FAILED
