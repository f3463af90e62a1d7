"""
couponmint Coupon Signing

ECDSA over secp256k1 with public-key recovery.

- Signatures are deterministic (RFC 6979) over the raw 32-byte digest.
- s is normalized to the lower half of the curve order.
- v = 27 + recovery id, where the recovery id is the parity of the y
  coordinate of the ephemeral point R.

Trust is anchored only by comparing a recovered identity with a configured
signer identity. Nothing here decides who is trusted.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import ecdsa
from ecdsa import numbertheory
from ecdsa.ecdsa import InvalidPointError
from ecdsa.util import sigdecode_string

from .codec import DIGEST_SIZE, Category, encode
from .errors import RecoveryFailure
from .identity import IdentityLike, normalize_identity

CURVE = ecdsa.SECP256k1
CURVE_ORDER = CURVE.order
HALF_ORDER = CURVE_ORDER // 2
V_OFFSET = 27

_RECOVERY_ERRORS = (
    numbertheory.Error,
    InvalidPointError,
    ecdsa.MalformedPointError,
    ValueError,
)


@dataclass(frozen=True)
class Signature:
    """Recoverable ECDSA signature (r, s, v)."""
    r: int
    s: int
    v: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "r": "0x" + self.r.to_bytes(32, "big").hex(),
            "s": "0x" + self.s.to_bytes(32, "big").hex(),
            "v": self.v,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        """
        Parse the {r, s, v} wire form.

        r and s are 32-byte hex strings (0x prefix optional) or integers.
        Malformed material raises RecoveryFailure.
        """
        if not isinstance(data, dict):
            raise RecoveryFailure("signature must be an object with r, s, v")
        try:
            r = _parse_word(data["r"], "r")
            s = _parse_word(data["s"], "s")
            v = data["v"]
        except KeyError as e:
            raise RecoveryFailure(f"signature is missing {e.args[0]}") from None
        if isinstance(v, str):
            try:
                v = int(v, 0)
            except ValueError:
                raise RecoveryFailure(f"malformed v: {v!r}") from None
        if isinstance(v, bool) or not isinstance(v, int):
            raise RecoveryFailure(f"malformed v: {v!r}")
        return cls(r=r, s=s, v=v)


@dataclass(frozen=True)
class Coupon:
    """A digest together with the authority's signature over it."""
    digest: bytes
    signature: Signature

    @property
    def r(self) -> int:
        return self.signature.r

    @property
    def s(self) -> int:
        return self.signature.s

    @property
    def v(self) -> int:
        return self.signature.v

    def to_dict(self, include_digest: bool = False) -> Dict[str, Any]:
        d = self.signature.to_dict()
        if include_digest:
            d["digest"] = "0x" + self.digest.hex()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any], digest: Optional[bytes] = None) -> "Coupon":
        """
        Build a coupon from its wire form.

        The digest comes from the "digest" field when present, otherwise from
        the digest argument (usually recomputed by the verifier).
        """
        signature = Signature.from_dict(data)
        raw = data.get("digest") if isinstance(data, dict) else None
        if raw is not None:
            digest = _parse_digest(raw)
        if digest is None:
            raise RecoveryFailure("coupon has no digest")
        return cls(digest=digest, signature=signature)


def _parse_word(value: Union[str, int], name: str) -> int:
    if isinstance(value, bool):
        raise RecoveryFailure(f"malformed {name}: {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise RecoveryFailure(f"malformed {name}: {value!r}")
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) != 64:
        raise RecoveryFailure(f"{name} must be 32 bytes of hex")
    try:
        return int(text, 16)
    except ValueError:
        raise RecoveryFailure(f"malformed {name}: {value!r}") from None


def _parse_digest(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif not isinstance(value, str):
        raise RecoveryFailure(f"malformed digest: {value!r}")
    else:
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise RecoveryFailure(f"malformed digest: {value!r}") from None
    if len(raw) != DIGEST_SIZE:
        raise RecoveryFailure(f"digest must be {DIGEST_SIZE} bytes")
    return raw


# =============================================================================
# Key material
# =============================================================================

def generate_signing_key() -> ecdsa.SigningKey:
    """Generate a fresh secp256k1 signing key."""
    return ecdsa.SigningKey.generate(curve=CURVE, hashfunc=hashlib.sha256)


def load_signing_key(key: Union[str, bytes, ecdsa.SigningKey]) -> ecdsa.SigningKey:
    """Load a signing key from 32 raw bytes or 64 hex digits (0x prefix optional)."""
    if isinstance(key, ecdsa.SigningKey):
        return key
    if isinstance(key, str):
        text = key.strip()
        text = text[2:] if text[:2] in ("0x", "0X") else text
        try:
            key = bytes.fromhex(text)
        except ValueError:
            raise ValueError("signing key must be 32 bytes of hex") from None
    if len(key) != 32:
        raise ValueError("signing key must be 32 bytes")
    try:
        return ecdsa.SigningKey.from_string(key, curve=CURVE, hashfunc=hashlib.sha256)
    except ecdsa.MalformedPointError as e:
        raise ValueError(f"invalid signing key: {e}") from None


def signing_key_hex(key: ecdsa.SigningKey) -> str:
    return "0x" + key.to_string().hex()


def identity_of_public_key(vk: ecdsa.VerifyingKey) -> str:
    """Identity = last 20 bytes of SHA-256 over the 64-byte uncompressed point."""
    return normalize_identity(hashlib.sha256(vk.to_string()).digest()[-20:])


def identity_of(key: Union[str, bytes, ecdsa.SigningKey]) -> str:
    """Return the identity controlled by a signing key."""
    return identity_of_public_key(load_signing_key(key).get_verifying_key())


# =============================================================================
# Sign / recover / verify
# =============================================================================

def _sigencode_ints(r: int, s: int, order: int):
    return r, s


def _check_digest(digest: bytes) -> bytes:
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_SIZE:
        raise RecoveryFailure(f"digest must be {DIGEST_SIZE} bytes")
    return bytes(digest)


def _candidates(digest: bytes, r: int, s: int) -> List[ecdsa.VerifyingKey]:
    raw = r.to_bytes(32, "big") + s.to_bytes(32, "big")
    try:
        return ecdsa.VerifyingKey.from_public_key_recovery_with_digest(
            raw,
            digest,
            CURVE,
            hashfunc=hashlib.sha256,
            sigdecode=sigdecode_string,
        )
    except _RECOVERY_ERRORS as e:
        raise RecoveryFailure(f"signature does not recover a public key: {e}") from None


def sign(digest: bytes, signing_key: Union[str, bytes, ecdsa.SigningKey]) -> Coupon:
    """
    Sign a 32-byte digest.

    The result is reproducible bit for bit for the same (digest, key) and
    always recovers to identity_of(signing_key).
    """
    digest = _check_digest(digest)
    sk = load_signing_key(signing_key)
    r, s = sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=_sigencode_ints
    )
    if s > HALF_ORDER:
        s = CURVE_ORDER - s

    expected = sk.get_verifying_key().to_string()
    for recovery_id, candidate in enumerate(_candidates(digest, r, s)):
        if candidate.to_string() == expected:
            return Coupon(digest=digest, signature=Signature(r=r, s=s, v=V_OFFSET + recovery_id))

    # Only reachable when r overflowed the curve order, which RFC 6979 output
    # for secp256k1 practically never produces.
    raise RecoveryFailure("could not determine recovery id")


def sign_coupon(
    category: Union[int, Category],
    beneficiary: IdentityLike,
    signing_key: Union[str, bytes, ecdsa.SigningKey],
) -> Coupon:
    """Encode a (category, beneficiary) pair and sign its digest."""
    return sign(encode(category, beneficiary), signing_key)


def recover(digest: bytes, signature: Union[Signature, Coupon, Dict[str, Any]]) -> str:
    """
    Recover the signer identity from a digest and signature.

    Raises RecoveryFailure when r/s/v are outside their valid ranges, s is in
    the upper half of the order, or r is not the x coordinate of a curve point.
    """
    digest = _check_digest(digest)
    if isinstance(signature, Coupon):
        signature = signature.signature
    elif not isinstance(signature, Signature):
        signature = Signature.from_dict(signature)

    r, s, v = signature.r, signature.s, signature.v
    if not 1 <= r < CURVE_ORDER:
        raise RecoveryFailure("r out of range")
    if not 1 <= s < CURVE_ORDER:
        raise RecoveryFailure("s out of range")
    if s > HALF_ORDER:
        raise RecoveryFailure("s is not in the lower half of the curve order")

    recovery_id = v - V_OFFSET if v >= V_OFFSET else v
    if recovery_id not in (0, 1):
        raise RecoveryFailure(f"invalid recovery id v={v}")

    candidates = _candidates(digest, r, s)
    return identity_of_public_key(candidates[recovery_id])


def verify(
    digest: bytes,
    signature: Union[Signature, Coupon, Dict[str, Any]],
    expected_signer: IdentityLike,
) -> bool:
    """
    True iff the signature recovers to expected_signer.

    A well-formed signature from anyone else returns False. Malformed
    signature material raises RecoveryFailure.
    """
    return recover(digest, signature) == normalize_identity(expected_signer)


class CouponSigner:
    """
    Offline coupon issuing service for the authority.

    Usage:
        signer = CouponSigner(private_key_hex)
        coupon = signer.issue(Category.CONTRIBUTOR, "0x1234...")
        payload = coupon.to_dict()   # {"r": ..., "s": ..., "v": ...}
    """

    def __init__(self, signing_key: Union[str, bytes, ecdsa.SigningKey, None] = None):
        self._key = load_signing_key(signing_key) if signing_key is not None else generate_signing_key()
        self.identity = identity_of(self._key)

    def issue(self, category: Union[int, Category], beneficiary: IdentityLike) -> Coupon:
        return sign_coupon(category, beneficiary, self._key)

    def issue_batch(
        self, category: Union[int, Category], beneficiaries: List[IdentityLike]
    ) -> Dict[str, Coupon]:
        """Issue one coupon per beneficiary, keyed by canonical identity."""
        return {normalize_identity(b): self.issue(category, b) for b in beneficiaries}

    def private_key_hex(self) -> str:
        return signing_key_hex(self._key)
