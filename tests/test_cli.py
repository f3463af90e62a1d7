import json

from couponmint.cli import main
from couponmint.codec import encode
from couponmint.signing import identity_of, recover

AUTHORITY_KEY = "0x" + "11" * 32
BUYER = "0x" + "b0" * 20
OTHER = "0x" + "b1" * 20


def run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


def test_keygen_prints_key_and_identity(capsys):
    code, out, _ = run(capsys, "keygen")
    assert code == 0
    data = json.loads(out)
    assert identity_of(data["private_key"]) == data["identity"]


def test_keygen_to_file(capsys, tmp_path):
    path = tmp_path / "authority.json"
    code, out, _ = run(capsys, "keygen", "-o", str(path))
    assert code == 0
    assert json.loads(path.read_text())["identity"] == out.strip()


def test_address(capsys):
    code, out, _ = run(capsys, "address", "--key", AUTHORITY_KEY)
    assert code == 0
    assert out.strip() == identity_of(AUTHORITY_KEY)


def test_address_from_environment(capsys, monkeypatch):
    monkeypatch.setenv("COUPONMINT_SIGNING_KEY", AUTHORITY_KEY)
    code, out, _ = run(capsys, "address")
    assert code == 0
    assert out.strip() == identity_of(AUTHORITY_KEY)


def test_digest(capsys):
    code, out, _ = run(capsys, "digest", "-c", "asset-holder", "-b", BUYER)
    assert code == 0
    assert out.strip() == "0x" + encode(1, BUYER).hex()


def test_coupon_then_verify(capsys):
    code, out, _ = run(capsys, "coupon", "-c", "0", "-b", BUYER, "-k", AUTHORITY_KEY)
    assert code == 0
    coupon = json.loads(out)
    assert set(coupon) == {"r", "s", "v"}
    assert recover(encode(0, BUYER), coupon) == identity_of(AUTHORITY_KEY)

    args = ["verify", "-c", "0", "-b", BUYER, "--signer", identity_of(AUTHORITY_KEY),
            "--r", coupon["r"], "--s", coupon["s"], "--v", str(coupon["v"])]
    code, out, _ = run(capsys, *args)
    assert code == 0
    assert "VALID" in out

    args[2] = "2"
    code, out, _ = run(capsys, *args)
    assert code == 1
    assert "INVALID" in out


def test_verify_malformed_signature(capsys):
    code, out, _ = run(capsys, "verify", "-c", "0", "-b", BUYER, "--signer", BUYER,
                       "--r", "0x" + "00" * 32, "--s", "0x" + "01" * 32, "--v", "27")
    assert code == 1
    assert "INVALID" in out


def test_coupon_batch(capsys, tmp_path):
    listing = tmp_path / "presale.txt"
    listing.write_text(f"# presale\n{BUYER}\n\n{OTHER.upper().replace('0X', '0x')}  # late\n")
    output = tmp_path / "coupons.json"

    code, _, err = run(capsys, "coupon", "-c", "contributor", "-B", str(listing),
                       "-k", AUTHORITY_KEY, "-o", str(output))
    assert code == 0
    assert "Generated 2 CONTRIBUTOR coupon(s)" in err

    coupons = json.loads(output.read_text())
    assert sorted(coupons) == [BUYER, OTHER]
    for identity, entry in coupons.items():
        assert recover(encode(0, identity), entry["coupon"]) == identity_of(AUTHORITY_KEY)


def test_coupon_requires_beneficiary(capsys):
    code, _, err = run(capsys, "coupon", "-c", "0", "-k", AUTHORITY_KEY)
    assert code == 2
    assert "--beneficiary" in err


def test_bad_input_exit_code(capsys):
    code, _, err = run(capsys, "digest", "-c", "7", "-b", BUYER)
    assert code == 2
    assert "INVALID_CATEGORY" in err

    code, _, err = run(capsys, "address", "--key", "0x1234")
    assert code == 2


def test_no_command(capsys):
    code, out, _ = run(capsys)
    assert code == 2
    assert "usage" in out
