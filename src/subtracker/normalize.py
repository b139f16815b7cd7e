from __future__ import annotations

import datetime as dt
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from hashlib import sha256


_WS_RE = re.compile(r"\s+")
_NON_ALNUM_SPACE_RE = re.compile(r"[^a-z0-9\s]")
_AMOUNT_NOISE_RE = re.compile(r"[^0-9.\-]")

MERCHANT_NORM_MAX_LEN = 255
# Largest value a Numeric(10, 2) column holds.
MAX_AMOUNT = Decimal("99999999.99")

_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%m-%d-%Y", "%m-%d-%y")


def normalize_merchant_name(name: str) -> str:
    """Canonical grouping key: lowercase, alphanumerics and spaces only, whitespace collapsed."""
    s = (name or "").lower().strip()
    s = _NON_ALNUM_SPACE_RE.sub("", s)
    s = _WS_RE.sub(" ", s).strip()
    return s[:MERCHANT_NORM_MAX_LEN]


def parse_date(value: str) -> dt.date:
    s = (value or "").strip()
    if not s:
        raise ValueError("Missing date")
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(s.split()[0], fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def parse_amount(value: str) -> Decimal:
    """Parse a user-supplied amount, ignoring currency symbols, commas and spaces."""
    s = (value or "").strip()
    if not s:
        raise ValueError("Missing amount")
    cleaned = _AMOUNT_NOISE_RE.sub("", s)
    try:
        out = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}") from None
    if not out.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return out


def money_2dp(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_amount(value: Decimal) -> str:
    return f"{money_2dp(value):.2f}"


def exceeds_amount_limit(value: Decimal) -> bool:
    return abs(money_2dp(value)) > MAX_AMOUNT


def sha256_bytes(content: bytes) -> str:
    return sha256(content).hexdigest()


def sha256_text(content: str) -> str:
    return sha256_bytes(content.encode("utf-8"))
