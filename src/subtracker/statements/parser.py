"""
Bank statement text parser.

Turns OCR / text-layer output of a statement into transaction candidates. Statement layouts vary
wildly (date, description, amount and balance on one line, or split across lines), so the parser
is tolerant: it prefers emitting a doubtful candidate over dropping a real one and leaves
false-positive filtering to the caller. Malformed lines never raise; they yield nothing.
"""

from __future__ import annotations

import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from src.subtracker.statements.models import ParseOptions, RawTransactionCandidate, TransactionType


_FULL_DATE_RE: dict[str, re.Pattern[str]] = {
    "US": re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"),
    "EU": re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"),
    "ISO": re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"),
}
_SHORT_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})(?=\s|$)")
_DOLLAR_AMOUNT_RE = re.compile(r"([+-]?)\$\s*([\d,]+\.?\d*)")
_PLAIN_AMOUNT_RE = re.compile(r"([+-]?)([\d,]+\.?\d{2})\b")
_BALANCE_RE = re.compile(r"balance[:\s]+([+-]?)\$?([\d,]+\.?\d*)", re.IGNORECASE)
_MERCHANT_RE = re.compile(r"^[A-Z][A-Z\s&]+")
# Keyword must be followed by a separator or a digit, otherwise "REFUND" reads as reference "UND".
_REFERENCE_RE = re.compile(r"\b(?:REFERENCE|REF#|REF)(?:[:\s]+|(?=\d))([A-Z0-9-]+)", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")
_EDGE_NON_WORD_RE = re.compile(r"^\W+|\W+$")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

MIN_ABS_AMOUNT = Decimal("0.001")

_TYPE_RULES: list[tuple[tuple[str, ...], TransactionType]] = [
    (("payment", "transfer"), "PAYMENT"),
    (("deposit", "credit"), "DEPOSIT"),
    (("withdrawal", "debit"), "WITHDRAWAL"),
    (("fee", "charge"), "FEE"),
    (("interest",), "INTEREST"),
    (("refund",), "REFUND"),
    (("subscription", "recurring"), "SUBSCRIPTION"),
]


def normalize_statement_text(text: str) -> list[str]:
    s = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    s = _BLANK_RUN_RE.sub("\n\n", s).strip()
    return [line.strip() for line in s.split("\n")]


def extract_transaction_type(description: str) -> Optional[TransactionType]:
    lower = (description or "").lower()
    for keywords, txn_type in _TYPE_RULES:
        if any(k in lower for k in keywords):
            return txn_type
    return None


def extract_merchant(description: str) -> Optional[str]:
    m = _MERCHANT_RE.match(description or "")
    if not m:
        return None
    return m.group(0).strip() or None


def extract_reference_number(description: str) -> Optional[str]:
    m = _REFERENCE_RE.search(description or "")
    return m.group(1) if m else None


def _signed_decimal(sign: str, digits: str) -> Optional[Decimal]:
    cleaned = (digits or "").replace(",", "")
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if sign == "-" else value


def _build_date(year: str, month: str, day: str) -> Optional[dt.date]:
    try:
        return dt.date(int(year), int(month), int(day))
    except ValueError:
        return None


def _match_date(line: str, options: ParseOptions) -> tuple[Optional[dt.date], list[re.Pattern[str] | str]]:
    """
    Returns the line's date (if any) and the tokens to strip from the line.

    A full date that is not a real calendar day still counts as the line's date token, so the
    short M/D fallback is not tried; the line then inherits the last seen date.
    """
    full_re = _FULL_DATE_RE[options.date_format]
    m = full_re.search(line)
    if m:
        a, b, c = m.groups()
        if options.date_format == "US":
            return _build_date(c, a, b), [full_re]
        if options.date_format == "EU":
            return _build_date(c, b, a), [full_re]
        return _build_date(a, b, c), [full_re]

    short = _SHORT_DATE_RE.search(line)
    if short:
        year = (options.today or dt.date.today()).year
        month, day = short.groups()
        return _build_date(str(year), month, day), [short.group(0)]
    return None, []


def _strip_tokens(line: str, tokens: list[re.Pattern[str] | str]) -> str:
    out = line
    for tok in tokens:
        if isinstance(tok, str):
            out = out.replace(tok, " ", 1)
        else:
            out = tok.sub(" ", out)
    return out


def _clean_description(text: str) -> str:
    s = _DOLLAR_AMOUNT_RE.sub("", text)
    s = _PLAIN_AMOUNT_RE.sub("", s)
    s = _WS_RE.sub(" ", s).strip()
    return _EDGE_NON_WORD_RE.sub("", s).strip()


def _amount_matches(text: str) -> list[re.Match[str]]:
    matches = list(_DOLLAR_AMOUNT_RE.finditer(text))
    if not matches:
        matches = list(_PLAIN_AMOUNT_RE.finditer(text))
    return matches


def parse_statement(text: str, options: Optional[ParseOptions] = None) -> list[RawTransactionCandidate]:
    """
    Parse raw statement text into candidates sorted ascending by date.

    Dates carry forward: a line with an amount but no date of its own uses the most recently
    seen date. A "balance: $X" line updates the balance attached to every later candidate.
    """
    options = options or ParseOptions()
    if options.date_format not in _FULL_DATE_RE:
        raise ValueError(f"Unsupported date format: {options.date_format!r}")

    lines = normalize_statement_text(text)
    out: list[RawTransactionCandidate] = []
    last_seen_date: Optional[dt.date] = None
    current_balance: Optional[Decimal] = None

    for i, line in enumerate(lines):
        if not line:
            continue

        line_date, date_tokens = _match_date(line, options)
        if line_date is not None:
            last_seen_date = line_date

        without_date = _strip_tokens(line, date_tokens)
        matches = _amount_matches(without_date)

        if matches and last_seen_date is not None:
            description = _clean_description(without_date)
            if not description and i > 0:
                description = lines[i - 1].strip()
            for m in matches:
                amount = _signed_decimal(m.group(1), m.group(2))
                if amount is None or abs(amount) <= MIN_ABS_AMOUNT:
                    continue
                if not description:
                    continue
                out.append(
                    RawTransactionCandidate(
                        date=last_seen_date,
                        amount=amount,
                        description=description,
                        currency=options.currency,
                        merchant=extract_merchant(description),
                        transaction_type=extract_transaction_type(description),
                        balance=current_balance,
                        reference_number=extract_reference_number(description),
                    )
                )

        bm = _BALANCE_RE.search(line)
        if bm:
            balance = _signed_decimal(bm.group(1), bm.group(2))
            if balance is not None:
                current_balance = balance

    # sorted() is stable: same-day candidates keep statement order.
    return sorted(out, key=lambda c: c.date)
