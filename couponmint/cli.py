#!/usr/bin/env python3
"""
couponmint Command Line Interface

Usage:
    couponmint keygen [--output <file>]
    couponmint address --key <hex>
    couponmint digest --category <n> --beneficiary <id>
    couponmint coupon --category <n> (--beneficiary <id> | --beneficiaries <file>) --key <hex>
    couponmint verify --category <n> --beneficiary <id> --signer <id> --r <hex> --s <hex> --v <n>
"""

import argparse
import json
import os
import sys
from typing import List, Optional


def save_json(data: dict, path: str):
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def read_identities(path: str) -> List[str]:
    """One identity per line; blank lines and # comments are ignored."""
    with open(path, 'r') as f:
        lines = [line.split("#", 1)[0].strip() for line in f]
    return [line for line in lines if line]


def _key_arg(args) -> str:
    key = args.key or os.getenv("COUPONMINT_SIGNING_KEY", "")
    if not key:
        raise SystemExit("a signing key is required (--key or COUPONMINT_SIGNING_KEY)")
    return key


def cmd_keygen(args):
    """Generate a secp256k1 coupon signing key."""
    from couponmint.signing import CouponSigner

    signer = CouponSigner()
    data = {"identity": signer.identity, "private_key": signer.private_key_hex()}

    if args.output:
        save_json(data, args.output)
        print(f"Key saved to: {args.output}", file=sys.stderr)
        print(signer.identity)
    else:
        print(json.dumps(data, indent=2))
    return 0


def cmd_address(args):
    """Print the identity controlled by a signing key."""
    from couponmint.signing import identity_of

    print(identity_of(_key_arg(args)))
    return 0


def cmd_digest(args):
    """Print the coupon digest for a (category, beneficiary) pair."""
    from couponmint.codec import digest_hex, encode, parse_category

    print(digest_hex(encode(parse_category(args.category), args.beneficiary)))
    return 0


def cmd_coupon(args):
    """Sign coupons for one beneficiary or a file of beneficiaries."""
    from couponmint.codec import parse_category
    from couponmint.signing import CouponSigner

    signer = CouponSigner(_key_arg(args))
    category = parse_category(args.category)

    if args.beneficiaries:
        coupons = signer.issue_batch(category, read_identities(args.beneficiaries))
        output = {identity: {"coupon": c.to_dict()} for identity, c in coupons.items()}
        print(f"Generated {len(coupons)} {category.name} coupon(s)", file=sys.stderr)
    elif args.beneficiary:
        coupon = signer.issue(category, args.beneficiary)
        output = coupon.to_dict(include_digest=args.with_digest)
        print(f"Generated {category.name} coupon for {args.beneficiary}", file=sys.stderr)
    else:
        print("either --beneficiary or --beneficiaries is required", file=sys.stderr)
        return 2

    if args.output:
        save_json(output, args.output)
        print(f"Coupons saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(output, indent=2))
    return 0


def cmd_verify(args):
    """Check a coupon against a signer identity."""
    from couponmint.codec import encode, parse_category
    from couponmint.errors import RecoveryFailure
    from couponmint.identity import normalize_identity
    from couponmint.signing import Signature, recover

    digest = encode(parse_category(args.category), args.beneficiary)
    try:
        signature = Signature.from_dict({"r": args.r, "s": args.s, "v": args.v})
        recovered = recover(digest, signature)
    except RecoveryFailure as e:
        print(f"✗ INVALID: {e.detail}")
        return 1

    if recovered == normalize_identity(args.signer):
        print(f"✓ VALID (signed by {recovered})")
        return 0
    print(f"✗ INVALID: recovered {recovered}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="couponmint",
        description="couponmint coupon tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Categories: 0 = contributor, 1 = asset holder, 2 = give away

Examples:
  couponmint keygen -o authority.json
  couponmint coupon -c 0 -b 0x1234... -k 0xabcd...
  couponmint coupon -c contributor -B presale.txt -k 0xabcd... -o coupons.json
  couponmint verify -c 0 -b 0x1234... --signer 0x5678... --r 0x.. --s 0x.. --v 27
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a signing key")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key")

    address_parser = subparsers.add_parser("address", help="Identity of a signing key")
    address_parser.add_argument("-k", "--key", help="Private key hex")

    digest_parser = subparsers.add_parser("digest", help="Coupon digest for a pair")
    digest_parser.add_argument("-c", "--category", required=True, help="Category number or name")
    digest_parser.add_argument("-b", "--beneficiary", required=True, help="Beneficiary identity")

    coupon_parser = subparsers.add_parser("coupon", help="Sign coupons")
    coupon_parser.add_argument("-c", "--category", required=True, help="Category number or name")
    coupon_parser.add_argument("-b", "--beneficiary", help="Beneficiary identity")
    coupon_parser.add_argument("-B", "--beneficiaries", help="File with one identity per line")
    coupon_parser.add_argument("-k", "--key", help="Private key hex")
    coupon_parser.add_argument("-o", "--output", help="Output JSON file")
    coupon_parser.add_argument("--with-digest", action="store_true", help="Include the digest")

    verify_parser = subparsers.add_parser("verify", help="Verify a coupon")
    verify_parser.add_argument("-c", "--category", required=True, help="Category number or name")
    verify_parser.add_argument("-b", "--beneficiary", required=True, help="Beneficiary identity")
    verify_parser.add_argument("--signer", required=True, help="Expected signer identity")
    verify_parser.add_argument("--r", required=True, help="r (32-byte hex)")
    verify_parser.add_argument("--s", required=True, help="s (32-byte hex)")
    verify_parser.add_argument("--v", required=True, type=int, help="v (27 or 28)")

    return parser


COMMANDS = {
    "keygen": cmd_keygen,
    "address": cmd_address,
    "digest": cmd_digest,
    "coupon": cmd_coupon,
    "verify": cmd_verify,
}


def main(argv: Optional[List[str]] = None) -> int:
    from couponmint.errors import CouponMintError

    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 2

    try:
        return command(args)
    except (CouponMintError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
