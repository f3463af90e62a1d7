"""
couponmint Signing Tests

Sign/recover over secp256k1: determinism, low-s normalization, recovery id
handling and rejection of malformed signature material.
"""

import unittest

from couponmint import (
    Category,
    Coupon,
    CouponSigner,
    RecoveryFailure,
    Signature,
    encode,
    identity_of,
    recover,
    sign,
    sign_coupon,
    verify,
)
from couponmint.signing import CURVE, CURVE_ORDER, HALF_ORDER, load_signing_key

AUTHORITY_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
BENEFICIARY = "0x" + "c3" * 20


def _non_curve_x() -> int:
    """Smallest x for which x^3 + 7 has no square root mod p."""
    p = CURVE.curve.p()
    x = 1
    while pow(x ** 3 + 7, (p - 1) // 2, p) != p - 1:
        x += 1
    return x


class TestKeys(unittest.TestCase):

    def test_identity_is_stable_and_canonical(self):
        identity = identity_of(AUTHORITY_KEY)
        self.assertEqual(identity, identity_of(AUTHORITY_KEY[2:]))
        self.assertEqual(identity, identity_of(bytes.fromhex("11" * 32)))
        self.assertTrue(identity.startswith("0x"))
        self.assertEqual(len(identity), 42)
        self.assertNotEqual(identity, identity_of(OTHER_KEY))

    def test_bad_keys_rejected(self):
        for bad in ["0x1234", "zz" * 32, b"\x00" * 31]:
            with self.subTest(key=bad):
                with self.assertRaises(ValueError):
                    load_signing_key(bad)

    def test_signer_round_trips_private_key(self):
        signer = CouponSigner(AUTHORITY_KEY)
        self.assertEqual(signer.private_key_hex(), AUTHORITY_KEY)
        self.assertEqual(signer.identity, identity_of(AUTHORITY_KEY))

    def test_generated_signers_differ(self):
        self.assertNotEqual(CouponSigner().identity, CouponSigner().identity)


class TestSignRecover(unittest.TestCase):

    def setUp(self):
        self.digest = encode(Category.CONTRIBUTOR, BENEFICIARY)
        self.authority = identity_of(AUTHORITY_KEY)

    def test_recover_returns_signer(self):
        coupon = sign(self.digest, AUTHORITY_KEY)
        self.assertEqual(recover(self.digest, coupon), self.authority)
        self.assertEqual(recover(self.digest, coupon.signature), self.authority)
        self.assertTrue(verify(self.digest, coupon, self.authority))

    def test_signing_is_deterministic(self):
        self.assertEqual(sign(self.digest, AUTHORITY_KEY), sign(self.digest, AUTHORITY_KEY))

    def test_signature_shape(self):
        for n in range(1, 17):
            beneficiary = "0x" + bytes([n]).hex() * 20
            coupon = sign_coupon(Category.ASSET_HOLDER, beneficiary, AUTHORITY_KEY)
            with self.subTest(beneficiary=beneficiary):
                self.assertIn(coupon.v, (27, 28))
                self.assertTrue(1 <= coupon.r < CURVE_ORDER)
                self.assertTrue(1 <= coupon.s <= HALF_ORDER)
                self.assertEqual(recover(coupon.digest, coupon), self.authority)

    def test_raw_recovery_id_accepted(self):
        coupon = sign(self.digest, AUTHORITY_KEY)
        raw = Signature(r=coupon.r, s=coupon.s, v=coupon.v - 27)
        self.assertEqual(recover(self.digest, raw), self.authority)

    def test_wrong_recovery_id_recovers_someone_else(self):
        coupon = sign(self.digest, AUTHORITY_KEY)
        flipped = Signature(r=coupon.r, s=coupon.s, v=55 - coupon.v)
        self.assertNotEqual(recover(self.digest, flipped), self.authority)

    def test_other_signer_does_not_verify(self):
        coupon = sign(self.digest, OTHER_KEY)
        self.assertFalse(verify(self.digest, coupon, self.authority))

    def test_coupon_does_not_transfer_to_other_pair(self):
        coupon = sign(self.digest, AUTHORITY_KEY)
        for other in (encode(Category.GIVE_AWAY, BENEFICIARY), encode(0, "0x" + "c4" * 20)):
            self.assertFalse(verify(other, coupon.signature, self.authority))


class TestMalformedSignatures(unittest.TestCase):

    def setUp(self):
        self.digest = encode(Category.CONTRIBUTOR, BENEFICIARY)
        self.coupon = sign(self.digest, AUTHORITY_KEY)

    def _rejects(self, signature, digest=None):
        with self.assertRaises(RecoveryFailure):
            recover(digest if digest is not None else self.digest, signature)

    def test_high_s_rejected(self):
        self._rejects(Signature(r=self.coupon.r, s=CURVE_ORDER - self.coupon.s, v=55 - self.coupon.v))

    def test_out_of_range_components_rejected(self):
        r, s, v = self.coupon.r, self.coupon.s, self.coupon.v
        self._rejects(Signature(r=0, s=s, v=v))
        self._rejects(Signature(r=CURVE_ORDER, s=s, v=v))
        self._rejects(Signature(r=r, s=0, v=v))
        self._rejects(Signature(r=r, s=CURVE_ORDER, v=v))

    def test_invalid_v_rejected(self):
        for v in (2, 26, 29, 35, -1):
            with self.subTest(v=v):
                self._rejects(Signature(r=self.coupon.r, s=self.coupon.s, v=v))

    def test_r_not_on_curve_rejected(self):
        self._rejects(Signature(r=_non_curve_x(), s=self.coupon.s, v=27))

    def test_bad_digest_rejected(self):
        self._rejects(self.coupon.signature, digest=self.digest[:31])
        with self.assertRaises(RecoveryFailure):
            sign(b"\x00" * 33, AUTHORITY_KEY)

    def test_malformed_wire_form_rejected(self):
        good = self.coupon.to_dict()
        for bad in (
            {"r": good["r"], "s": good["s"]},
            {"r": "0x1234", "s": good["s"], "v": 27},
            {"r": good["r"], "s": "0x" + "zz" * 32, "v": 27},
            {"r": good["r"], "s": good["s"], "v": "twenty-seven"},
            {"r": good["r"], "s": good["s"], "v": True},
            "not an object",
        ):
            with self.subTest(signature=bad):
                self._rejects(bad)


class TestWireForm(unittest.TestCase):

    def test_coupon_wire_form(self):
        coupon = CouponSigner(AUTHORITY_KEY).issue(Category.GIVE_AWAY, BENEFICIARY)
        wire = coupon.to_dict(include_digest=True)
        self.assertEqual(len(wire["r"]), 66)
        self.assertEqual(len(wire["s"]), 66)
        self.assertEqual(wire["digest"], "0x" + encode(2, BENEFICIARY).hex())

        parsed = Coupon.from_dict(wire)
        self.assertEqual(parsed, coupon)
        self.assertEqual(recover(parsed.digest, wire), identity_of(AUTHORITY_KEY))

    def test_coupon_without_digest_needs_one_supplied(self):
        coupon = CouponSigner(AUTHORITY_KEY).issue(0, BENEFICIARY)
        with self.assertRaises(RecoveryFailure):
            Coupon.from_dict(coupon.to_dict())
        self.assertEqual(Coupon.from_dict(coupon.to_dict(), digest=coupon.digest), coupon)

    def test_non_text_digest_rejected(self):
        wire = CouponSigner(AUTHORITY_KEY).issue(0, BENEFICIARY).to_dict(include_digest=True)
        for bad in (5, 1.5, ["00"] * 32, {"hex": "00"}):
            with self.subTest(digest=bad):
                with self.assertRaises(RecoveryFailure):
                    Coupon.from_dict({**wire, "digest": bad})

    def test_issue_batch_keys_by_canonical_identity(self):
        signer = CouponSigner(AUTHORITY_KEY)
        coupons = signer.issue_batch(Category.CONTRIBUTOR, [BENEFICIARY.upper().replace("0X", "0x")])
        self.assertEqual(list(coupons), [BENEFICIARY])
        self.assertTrue(verify(coupons[BENEFICIARY].digest, coupons[BENEFICIARY], signer.identity))


if __name__ == "__main__":
    unittest.main()
