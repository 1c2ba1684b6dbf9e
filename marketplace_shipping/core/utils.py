"""
Small normalization helpers shared by the providers and services.

Provider payloads are loosely typed (numbers as strings, booleans as
"yes"/"1", postal codes with spaces), so everything crossing a client
boundary goes through one of these.
"""
import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

TRUTHY_VALUES = {"1", "true", "yes", "y", "on"}

_NON_DIGITS = re.compile(r"[^\d]")
_WHITESPACE = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utcnow().isoformat()


def iso_days_from_now(days: Optional[float]) -> Optional[str]:
    """ISO timestamp `days` from now; None for missing or non-positive days."""
    if days is None or days <= 0:
        return None
    return (utcnow() + timedelta(days=days)).isoformat()


def normalize_postal_code(raw: Any, length: int = 0) -> str:
    """
    Digits only, truncated to `length` when longer.

    Non-numeric codes (no digits at all) are compacted and uppercased instead.
    """
    value = str(raw or "").strip()
    if not value:
        return ""

    digits = _NON_DIGITS.sub("", value)
    if digits:
        return digits[:length] if length > 0 else digits

    compact = _WHITESPACE.sub("", value).upper()
    return compact[:length] if length > 0 else compact


def truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value if value is not None else "").strip().lower() in TRUTHY_VALUES


def to_finite_number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def to_number(value: Any, default: float = 0.0) -> float:
    number = to_finite_number(value)
    return default if number is None else number


def to_positive_int(value: Any, default: int = 0) -> int:
    """Leading-integer parse; anything non-positive yields `default`."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        parsed = int(value)
    else:
        match = re.match(r"\s*[-+]?\d+", str(value))
        if not match:
            return default
        parsed = int(match.group(0))
    return parsed if parsed > 0 else default


def stable_stringify(value: Any) -> str:
    """JSON with sorted keys and no whitespace, for hashing."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value if value not in (None, "") else 0))
    except InvalidOperation:
        return Decimal(0)


def round_half_up(value: Any) -> int:
    return int(_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Any) -> float:
    """Storefront subunits (cents) to major units."""
    return float(_decimal(value) / 100)


def to_minor_units(value: Any) -> int:
    """Major units to storefront subunits, rounded half-up, never negative."""
    return max(0, round_half_up(_decimal(value) * 100))


def strip_empty(value: Any) -> Any:
    """
    Recursively drop None, "" and empty containers.

    Returns None when nothing is left, so callers can test the result directly.
    """
    if isinstance(value, list):
        cleaned = [strip_empty(entry) for entry in value]
        return [entry for entry in cleaned if entry is not None]

    if isinstance(value, dict):
        result = {}
        for key, entry in value.items():
            cleaned = strip_empty(entry)
            if cleaned is not None:
                result[key] = cleaned
        return result or None

    if value is None or value == "":
        return None

    return value


def first_present(*values: Any, default: Any = "") -> Any:
    """First value that is not None/empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return default
