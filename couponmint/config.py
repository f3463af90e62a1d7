"""
Configuration module for couponmint.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import Any, Dict, List, Optional

from .errors import InvalidIdentity
from .identity import require_identity

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("COUPONMINT_ENV", "dev")  # dev|stage|prod

# Engine
AUTHORITY = os.getenv("COUPONMINT_AUTHORITY", "")
COUPON_SIGNER = os.getenv("COUPONMINT_COUPON_SIGNER", "")
MAX_SUPPLY = int(os.getenv("COUPONMINT_MAX_SUPPLY", "10000"))
MAX_PER_ISSUE = os.getenv("COUPONMINT_MAX_PER_ISSUE", "")
UNIT_PRICE = int(os.getenv("COUPONMINT_UNIT_PRICE", str(80_000_000_000_000_000)))
ROYALTY_BPS = int(os.getenv("COUPONMINT_ROYALTY_BPS", "1000"))

# Storage (unset -> in-memory)
DB_PATH = os.getenv("COUPONMINT_DB_PATH", "")

# Logging
LOG_LEVEL = os.getenv("COUPONMINT_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("COUPONMINT_LOG_JSON", "true").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("COUPONMINT_LOG_FILE", "")

# Rate limits (requests per minute, per caller)
ISSUE_RPM = int(os.getenv("COUPONMINT_ISSUE_RPM", "120"))


# ============================================================
# Engine settings
# ============================================================

def engine_settings() -> Dict[str, Any]:
    """
    Keyword arguments for IssuanceEngine built from the environment.

    Raises InvalidIdentity if COUPONMINT_AUTHORITY is unset or malformed.
    """
    if not AUTHORITY:
        raise InvalidIdentity("COUPONMINT_AUTHORITY is not set")
    settings: Dict[str, Any] = {
        "authority": require_identity(AUTHORITY, "authority"),
        "max_supply": MAX_SUPPLY,
        "unit_price": UNIT_PRICE,
        "royalty_basis_points": ROYALTY_BPS,
    }
    if COUPON_SIGNER:
        settings["coupon_signer"] = require_identity(COUPON_SIGNER, "coupon signer")
    max_per_issue = _optional_int(MAX_PER_ISSUE)
    if max_per_issue is not None:
        settings["max_per_issue"] = max_per_issue
    return settings


def _optional_int(value: str) -> Optional[int]:
    value = value.strip()
    return int(value) if value else None


# ============================================================
# Validation
# ============================================================

def validate_config() -> List[str]:
    """
    Check the environment for problems.

    Returns a list of human-readable problems; empty when the
    configuration is usable.
    """
    problems = []
    if not AUTHORITY:
        problems.append("COUPONMINT_AUTHORITY is not set")
    else:
        try:
            require_identity(AUTHORITY, "authority")
        except InvalidIdentity as e:
            problems.append(f"COUPONMINT_AUTHORITY: {e.detail}")
    if COUPON_SIGNER:
        try:
            require_identity(COUPON_SIGNER, "coupon signer")
        except InvalidIdentity as e:
            problems.append(f"COUPONMINT_COUPON_SIGNER: {e.detail}")
    if MAX_SUPPLY < 1:
        problems.append("COUPONMINT_MAX_SUPPLY must be at least 1")
    if UNIT_PRICE < 0:
        problems.append("COUPONMINT_UNIT_PRICE must not be negative")
    if not 0 <= ROYALTY_BPS <= 1000:
        problems.append("COUPONMINT_ROYALTY_BPS must be within [0, 1000]")
    try:
        _optional_int(MAX_PER_ISSUE)
    except ValueError:
        problems.append("COUPONMINT_MAX_PER_ISSUE must be an integer")
    return problems


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    return ENV == "prod"


def is_debug() -> bool:
    return os.getenv("COUPONMINT_DEBUG", "").lower() in ("1", "true", "yes")
