from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


BillingInterval = Literal["weekly", "monthly", "quarterly", "annual"]
SubscriptionStatusName = Literal["ACTIVE", "CANCELLED", "PENDING_CANCEL"]

BILLING_INTERVALS: tuple[str, ...] = ("weekly", "monthly", "quarterly", "annual")
SUBSCRIPTION_STATUSES: tuple[str, ...] = ("ACTIVE", "CANCELLED", "PENDING_CANCEL")


@dataclass(frozen=True)
class TransactionRecord:
    """A validated transaction ready for insertion."""

    user_id: str
    posted_date: dt.date
    amount: str  # exactly two decimal places, debit negative
    currency: str
    description_raw: str
    merchant_norm: Optional[str]
    merchant_id: Optional[int]
    is_subscription_like: bool
    import_batch_id: Optional[int] = None


@dataclass(frozen=True)
class UserTransactionRow:
    merchant_id: Optional[int]
    merchant_norm: Optional[str]
    amount: Decimal
    posted_date: dt.date
    currency: str


class ImportResult(BaseModel):
    user_id: str
    source: str
    file_name: str
    file_hash: str
    batch_id: Optional[int] = None
    row_count: int
    inserted: int
    skipped: int = 0
    over_limit: int = 0
    filtered_unknown_provider: int = 0
    warnings: list[str] = Field(default_factory=list)
    detection: Optional["DetectionResult"] = None


class DetectionResult(BaseModel):
    user_id: str
    groups: int = 0
    recurring: int = 0
    created: int = 0
    updated: int = 0
    skipped_manual: int = 0
    failed: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class SubscriptionView(BaseModel):
    id: int
    merchant: str
    status: str
    average_amount: Decimal
    currency: str
    billing_interval: str
    next_expected_date: Optional[dt.date]
    first_seen: dt.date
    last_seen: dt.date
    from_manual: bool
    guide_slug: Optional[str] = None


class GuideView(BaseModel):
    id: int
    provider_name: str
    provider_slug: str
    category: Optional[str] = None
    cancellation_url: Optional[str] = None
    instructions_md: str
    email_template: Optional[str] = None
    last_reviewed_at: dt.datetime


class TransactionView(BaseModel):
    id: int
    posted_date: dt.date
    amount: Decimal
    currency: str
    description: str
    merchant: Optional[str]
    is_subscription_like: bool


class TransactionPage(BaseModel):
    items: list[TransactionView]
    next_cursor: Optional[int] = None


ImportResult.model_rebuild()
