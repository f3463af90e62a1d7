"""
couponmint Identities

An identity is 20 raw bytes. Its canonical text form is "0x" followed by
40 lowercase hexadecimal digits. All engine state stores the text form;
the codec uses the binary form.
"""

import re
from typing import Union

from .errors import InvalidIdentity

IDENTITY_LENGTH = 20
ZERO_IDENTITY = "0x" + "00" * IDENTITY_LENGTH

_HEX_IDENTITY = re.compile(r"^(0x|0X)?[0-9a-fA-F]{40}$")

IdentityLike = Union[str, bytes, bytearray]


def normalize_identity(value: IdentityLike) -> str:
    """
    Return the canonical text form of an identity.

    Accepts 20 raw bytes, or 40 hex digits with or without a 0x prefix
    in any case. Anything else raises InvalidIdentity.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != IDENTITY_LENGTH:
            raise InvalidIdentity(
                f"identity must be {IDENTITY_LENGTH} bytes, got {len(value)}"
            )
        return "0x" + bytes(value).hex()

    if not isinstance(value, str):
        raise InvalidIdentity(f"identity must be str or bytes, got {type(value).__name__}")

    text = value.strip()
    if not _HEX_IDENTITY.match(text):
        raise InvalidIdentity(f"malformed identity: {value!r}")

    if text[:2] in ("0x", "0X"):
        text = text[2:]
    return "0x" + text.lower()


def identity_bytes(value: IdentityLike) -> bytes:
    """Return the fixed-width 20-byte binary form of an identity."""
    return bytes.fromhex(normalize_identity(value)[2:])


def require_identity(value: IdentityLike, role: str = "identity") -> str:
    """
    Normalize an identity that must designate a real party.

    The zero identity is well-formed but never a valid authority,
    receiver, or beneficiary.
    """
    identity = normalize_identity(value)
    if identity == ZERO_IDENTITY:
        raise InvalidIdentity(f"{role} must not be the zero identity")
    return identity
