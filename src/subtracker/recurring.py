from __future__ import annotations

import calendar
import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from src.subtracker.config import DetectionConfig
from src.subtracker.models import BillingInterval, DetectionResult, UserTransactionRow
from src.subtracker.normalize import money_2dp
from src.subtracker.repository import SubscriptionRepository
from src.utils.locks import mask_user, user_serial_lock


log = logging.getLogger(__name__)


@dataclass
class TransactionGroup:
    merchant_id: int
    normalized: str
    currency: str
    first_seen: dt.date
    last_seen: dt.date
    amounts: list[Decimal] = field(default_factory=list)
    dates: list[dt.date] = field(default_factory=list)


def group_by_merchant(rows: Iterable[UserTransactionRow]) -> list[TransactionGroup]:
    groups: dict[int, TransactionGroup] = {}
    for r in rows:
        if not r.merchant_id or not r.merchant_norm:
            continue
        g = groups.get(r.merchant_id)
        if g is None:
            g = TransactionGroup(
                merchant_id=r.merchant_id,
                normalized=r.merchant_norm,
                currency=r.currency,
                first_seen=r.posted_date,
                last_seen=r.posted_date,
            )
            groups[r.merchant_id] = g
        g.amounts.append(r.amount)
        g.dates.append(r.posted_date)
        # Last member wins; currencies within a group are not cross-checked.
        g.currency = r.currency
        if r.posted_date < g.first_seen:
            g.first_seen = r.posted_date
        if r.posted_date > g.last_seen:
            g.last_seen = r.posted_date
    return list(groups.values())


def _day_gaps(dates: list[dt.date]) -> list[int]:
    s = sorted(dates)
    return [(s[i] - s[i - 1]).days for i in range(1, len(s))]


def _mean(values: list[int]) -> float:
    return sum(values) / len(values)


def is_recurring(group: TransactionGroup, *, tolerance_days: float = 5) -> bool:
    """
    Every gap between consecutive charges must be within `tolerance_days` of the mean gap.

    Two charges always pass: a single gap never deviates from its own mean.
    """
    if len(group.dates) < 2:
        return False
    gaps = _day_gaps(group.dates)
    avg = _mean(gaps)
    return all(abs(g - avg) <= tolerance_days for g in gaps)


def detect_interval(group: TransactionGroup, cfg: Optional[DetectionConfig] = None) -> BillingInterval:
    cfg = cfg or DetectionConfig()
    if len(group.dates) < 2:
        return "monthly"
    avg = _mean(_day_gaps(group.dates))
    if avg <= cfg.weekly_max_days:
        return "weekly"
    if avg <= cfg.monthly_max_days:
        return "monthly"
    if avg <= cfg.quarterly_max_days:
        return "quarterly"
    return "annual"


def average_amount(amounts: list[Decimal]) -> Decimal:
    if not amounts:
        return Decimal("0.00")
    return money_2dp(sum(amounts, Decimal("0")) / Decimal(len(amounts)))


def add_months(value: dt.date, months: int) -> dt.date:
    # Cap to last day of month (Jan 31 + 1 month -> Feb 28/29).
    idx = value.month - 1 + months
    year = value.year + idx // 12
    month = idx % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def estimate_next(last_seen: dt.date, interval: BillingInterval) -> dt.date:
    if interval == "weekly":
        return last_seen + dt.timedelta(days=7)
    if interval == "quarterly":
        return add_months(last_seen, 3)
    if interval == "annual":
        return add_months(last_seen, 12)
    return add_months(last_seen, 1)


def _upsert_group(
    repo: SubscriptionRepository,
    *,
    user_id: str,
    group: TransactionGroup,
    cfg: DetectionConfig,
    result: DetectionResult,
) -> None:
    interval = detect_interval(group, cfg)
    avg = average_amount(group.amounts)
    next_expected = estimate_next(group.last_seen, interval)
    guide = repo.find_guide_by_slug(group.normalized)

    existing = repo.find_subscription_by_user_and_merchant(user_id, group.merchant_id)
    if existing is None:
        repo.insert_subscription(
            user_id=user_id,
            merchant_id=group.merchant_id,
            average_amount=avg,
            currency=group.currency,
            billing_interval=interval,
            first_seen=group.first_seen,
            last_seen=group.last_seen,
            next_expected_date=next_expected,
            from_manual=False,
            guide_id=guide.id if guide else None,
        )
        result.created += 1
        return
    if existing.from_manual:
        result.skipped_manual += 1
        return
    repo.update_subscription(
        existing,
        average_amount=avg,
        last_seen=group.last_seen,
        next_expected_date=next_expected,
        billing_interval=interval,
        guide_id=guide.id if guide else existing.guide_id,
    )
    result.updated += 1


def detect_subscriptions(
    repo: SubscriptionRepository,
    user_id: str,
    cfg: Optional[DetectionConfig] = None,
) -> DetectionResult:
    """
    Group the user's transactions by merchant and upsert a subscription for every recurring group.

    Each group is processed in its own savepoint: a failure rolls back only that group, is logged,
    and is reported in `DetectionResult.failed`; the remaining groups still run. Subscriptions
    entered manually are never modified.
    """
    cfg = cfg or DetectionConfig()
    result = DetectionResult(user_id=user_id)
    with user_serial_lock(user_id):
        groups = group_by_merchant(repo.find_transactions_by_user(user_id))
        result.groups = len(groups)
        for group in groups:
            if not is_recurring(group, tolerance_days=cfg.gap_tolerance_days):
                continue
            result.recurring += 1
            try:
                with repo.savepoint():
                    _upsert_group(repo, user_id=user_id, group=group, cfg=cfg, result=result)
            except Exception:
                log.exception("Subscription detection failed for merchant %r (user %s)", group.normalized, mask_user(user_id))
                result.failed.append(group.normalized)
        repo.commit()
    log.info(
        "Detection for user %s: groups=%d recurring=%d created=%d updated=%d manual=%d failed=%d",
        mask_user(user_id),
        result.groups,
        result.recurring,
        result.created,
        result.updated,
        result.skipped_manual,
        len(result.failed),
    )
    return result
