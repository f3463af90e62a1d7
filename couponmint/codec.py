"""
couponmint Coupon Codec

Reduces a (category, beneficiary) pair to the 32-byte digest that the
coupon signer signs.

Layout (64 bytes, no delimiters, no length prefixes):
    bytes  0..31   category as a big-endian unsigned 256-bit integer
    bytes 32..63   beneficiary identity, 20 bytes left-padded with zeros

digest = SHA-256(layout)

Every field is fixed width, so two different pairs can never serialize to
the same bytes. Each category is therefore its own digest domain and a
coupon for one category cannot be replayed as another.
"""

import hashlib
from enum import IntEnum
from typing import Union

from .errors import InvalidCategory
from .identity import IdentityLike, identity_bytes

WORD_SIZE = 32
DIGEST_SIZE = 32


class Category(IntEnum):
    """Why a participant was pre-approved."""
    CONTRIBUTOR = 0
    ASSET_HOLDER = 1
    GIVE_AWAY = 2


def parse_category(value: Union[int, str, Category]) -> Category:
    """
    Resolve a category from its integer value or its name.

    Integers outside the enumeration, bools and unknown names raise
    InvalidCategory.
    """
    if isinstance(value, Category):
        return value
    if isinstance(value, bool):
        raise InvalidCategory(f"category must be an integer, got {value!r}")
    if isinstance(value, int):
        try:
            return Category(value)
        except ValueError:
            raise InvalidCategory(f"unknown category: {value}") from None
    if isinstance(value, str):
        name = value.strip().upper().replace("-", "_")
        if name in Category.__members__:
            return Category[name]
        if name.isdigit():
            return parse_category(int(name))
        raise InvalidCategory(f"unknown category: {value!r}")
    raise InvalidCategory(f"category must be an integer, got {type(value).__name__}")


def encode_layout(category: Union[int, Category], beneficiary: IdentityLike) -> bytes:
    """Return the 64-byte canonical pre-image for a (category, beneficiary) pair."""
    cat = parse_category(category)
    account = identity_bytes(beneficiary)
    return int(cat).to_bytes(WORD_SIZE, "big") + account.rjust(WORD_SIZE, b"\x00")


def encode(category: Union[int, Category], beneficiary: IdentityLike) -> bytes:
    """
    Compute the coupon digest for a (category, beneficiary) pair.

    Pure and deterministic. Raises InvalidCategory or InvalidIdentity
    on malformed input.
    """
    return hashlib.sha256(encode_layout(category, beneficiary)).digest()


def digest_hex(digest: bytes) -> str:
    return "0x" + digest.hex()
