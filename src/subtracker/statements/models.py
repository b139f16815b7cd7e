from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional


DateFormat = Literal["US", "EU", "ISO"]  # US: MM/DD/YYYY, EU: DD/MM/YYYY, ISO: YYYY-MM-DD
TransactionType = Literal["PAYMENT", "DEPOSIT", "WITHDRAWAL", "FEE", "INTEREST", "REFUND", "SUBSCRIPTION"]

DATE_FORMATS: tuple[str, ...] = ("US", "EU", "ISO")


@dataclass(frozen=True)
class ParseOptions:
    currency: str = "USD"
    date_format: DateFormat = "US"
    # Year used for short M/D dates; defaults to the current calendar year.
    today: Optional[dt.date] = None


@dataclass(frozen=True)
class RawTransactionCandidate:
    date: dt.date
    amount: Decimal  # debit negative, credit positive
    description: str
    currency: str
    merchant: Optional[str] = None
    transaction_type: Optional[TransactionType] = None
    balance: Optional[Decimal] = None
    reference_number: Optional[str] = None
