import json
import logging

import pytest

from couponmint import config
from couponmint.engine import IssuanceEngine
from couponmint.errors import Unauthorized
from couponmint.logging_config import (
    StructuredFormatter,
    audit_log,
    request_id_var,
    set_request_id,
)
from couponmint.state import Phase

AUTHORITY = "0x" + "aa" * 20
STRANGER = "0x" + "5e" * 20


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setattr(config, "AUTHORITY", AUTHORITY)
    monkeypatch.setattr(config, "COUPON_SIGNER", "")
    monkeypatch.setattr(config, "MAX_SUPPLY", 500)
    monkeypatch.setattr(config, "MAX_PER_ISSUE", "")
    monkeypatch.setattr(config, "UNIT_PRICE", 7)
    monkeypatch.setattr(config, "ROYALTY_BPS", 250)
    return monkeypatch


def test_engine_settings(env):
    settings = config.engine_settings()
    assert settings == {
        "authority": AUTHORITY,
        "max_supply": 500,
        "unit_price": 7,
        "royalty_basis_points": 250,
    }
    engine = IssuanceEngine(**settings)
    assert engine.remaining_supply == 500
    assert engine.royalty == (AUTHORITY, 250)


def test_engine_settings_optional_values(env):
    env.setattr(config, "COUPON_SIGNER", STRANGER.upper().replace("0X", "0x"))
    env.setattr(config, "MAX_PER_ISSUE", " 5 ")
    settings = config.engine_settings()
    assert settings["coupon_signer"] == STRANGER
    assert settings["max_per_issue"] == 5


def test_validate_config(env):
    assert config.validate_config() == []

    env.setattr(config, "AUTHORITY", "")
    env.setattr(config, "ROYALTY_BPS", 1001)
    env.setattr(config, "MAX_PER_ISSUE", "many")
    problems = config.validate_config()
    assert "COUPONMINT_AUTHORITY is not set" in problems
    assert "COUPONMINT_ROYALTY_BPS must be within [0, 1000]" in problems
    assert "COUPONMINT_MAX_PER_ISSUE must be an integer" in problems


def test_validate_config_malformed_identity(env):
    env.setattr(config, "AUTHORITY", "0x" + "00" * 20)
    problems = config.validate_config()
    assert len(problems) == 1
    assert problems[0].startswith("COUPONMINT_AUTHORITY:")


def test_structured_formatter():
    token = request_id_var.set("req-7")
    try:
        record = logging.LogRecord("couponmint.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.extra_fields = {"event_type": "TEST"}
        data = json.loads(StructuredFormatter().format(record))
    finally:
        request_id_var.reset(token)

    assert data["message"] == "hello world"
    assert data["level"] == "INFO"
    assert data["request_id"] == "req-7"
    assert data["event_type"] == "TEST"


def test_set_request_id_generates_one():
    token = request_id_var.set("")
    try:
        generated = set_request_id()
        assert generated
        assert request_id_var.get() == generated
    finally:
        request_id_var.reset(token)


def test_engine_audits_changes(caplog):
    caplog.set_level(logging.INFO, logger="couponmint.audit")
    engine = IssuanceEngine(authority=AUTHORITY, unit_price=1)
    engine.set_phase(AUTHORITY, Phase.PUBLIC_SALE)
    engine.issue(2, 2, STRANGER)
    with pytest.raises(Unauthorized):
        engine.set_price(STRANGER, 5)

    events = [r.extra_fields["event_type"] for r in caplog.records if hasattr(r, "extra_fields")]
    assert events == ["PHASE_CHANGED", "UNITS_ISSUED", "SECURITY_EVENT"]


def test_audit_logger_levels(caplog):
    caplog.set_level(logging.INFO, logger="couponmint.audit")
    audit_log.security_event("replayed_coupon", severity="high", caller=STRANGER)
    audit_log.withdrawal_failed(3, "refused")
    assert [r.levelno for r in caplog.records] == [logging.ERROR, logging.ERROR]
    assert caplog.records[0].extra_fields["caller"] == STRANGER


def test_audit_records_point_at_engine(caplog):
    caplog.set_level(logging.INFO, logger="couponmint.audit")
    engine = IssuanceEngine(authority=AUTHORITY, unit_price=1)
    engine.set_phase(AUTHORITY, Phase.PUBLIC_SALE)

    [record] = [r for r in caplog.records if getattr(r, "extra_fields", {}).get("event_type") == "PHASE_CHANGED"]
    assert record.module == "engine"
    assert record.funcName == "set_phase"
    assert record.lineno > 0

    data = json.loads(StructuredFormatter().format(record))
    assert data["function"] == "set_phase"
    assert data["line"] == record.lineno
