from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml

from src.db.models import Subscription, SubscriptionGuide
from src.subtracker.exceptions import GuideNotFound, InvalidSubscriptionInput, SubscriptionNotFound
from src.subtracker.models import (
    BILLING_INTERVALS,
    SUBSCRIPTION_STATUSES,
    BillingInterval,
    GuideView,
    SubscriptionView,
    TransactionPage,
    TransactionView,
)
from src.subtracker.normalize import money_2dp, normalize_merchant_name
from src.subtracker.repository import SubscriptionRepository
from src.utils.locks import user_serial_lock
from src.utils.time import today as _today


log = logging.getLogger(__name__)

# Manual entries without a next date get a rough estimate, not calendar arithmetic.
_MANUAL_NEXT_DAYS = {"weekly": 7, "monthly": 30, "quarterly": 90, "annual": 365}


def to_view(sub: Subscription) -> SubscriptionView:
    return SubscriptionView(
        id=sub.id,
        merchant=sub.merchant.name if sub.merchant else "Unknown",
        status=sub.status,
        average_amount=money_2dp(Decimal(str(sub.average_amount))),
        currency=sub.currency,
        billing_interval=sub.billing_interval,
        next_expected_date=sub.next_expected_date,
        first_seen=sub.first_seen,
        last_seen=sub.last_seen,
        from_manual=bool(sub.from_manual),
        guide_slug=sub.guide.provider_slug if sub.guide else None,
    )


def create_manual_subscription(
    repo: SubscriptionRepository,
    *,
    user_id: str,
    merchant_name: str,
    amount: Decimal,
    billing_interval: BillingInterval,
    currency: str = "USD",
    guide_id: Optional[int] = None,
    next_expected_date: Optional[dt.date] = None,
    today: Optional[dt.date] = None,
) -> Subscription:
    """
    Record a subscription entered by the user. It is flagged `from_manual`, so detection runs
    never overwrite it.
    """
    name = (merchant_name or "").strip()
    if not name:
        raise InvalidSubscriptionInput("Merchant name is required.")
    if amount is None or not amount.is_finite() or amount <= 0:
        raise InvalidSubscriptionInput("Amount must be positive.")
    if billing_interval not in BILLING_INTERVALS:
        raise InvalidSubscriptionInput(f"Unknown billing interval: {billing_interval!r}")
    normalized = normalize_merchant_name(name)
    if not normalized:
        raise InvalidSubscriptionInput(f"Merchant name has no usable characters: {merchant_name!r}")

    now = today or _today()
    if next_expected_date is None:
        next_expected_date = now + dt.timedelta(days=_MANUAL_NEXT_DAYS[billing_interval])

    with user_serial_lock(user_id):
        try:
            if guide_id is not None and repo.find_guide_by_id(guide_id) is None:
                raise GuideNotFound(f"Guide not found: {guide_id}")
            merchant = repo.find_or_create_merchant(name=name, normalized=normalized)
            existing = repo.find_subscription_by_user_and_merchant(user_id, merchant.id)
            if existing is not None and existing.from_manual:
                raise InvalidSubscriptionInput(f"A subscription for {name!r} already exists.")
            if existing is not None:
                # A detected subscription becomes user-owned.
                sub = repo.update_subscription(
                    existing,
                    average_amount=money_2dp(amount),
                    currency=(currency or "USD").strip().upper(),
                    billing_interval=billing_interval,
                    next_expected_date=next_expected_date,
                    from_manual=True,
                    guide_id=guide_id if guide_id is not None else existing.guide_id,
                )
                repo.commit()
                return sub
            sub = repo.insert_subscription(
                user_id=user_id,
                merchant_id=merchant.id,
                average_amount=money_2dp(amount),
                currency=(currency or "USD").strip().upper(),
                billing_interval=billing_interval,
                first_seen=now,
                last_seen=now,
                next_expected_date=next_expected_date,
                from_manual=True,
                guide_id=guide_id,
            )
            repo.commit()
        except Exception:
            repo.rollback()
            raise
    return sub


def list_subscriptions(repo: SubscriptionRepository, user_id: str) -> list[SubscriptionView]:
    return [to_view(s) for s in repo.list_subscriptions(user_id)]


def get_subscription(repo: SubscriptionRepository, user_id: str, subscription_id: int) -> Optional[SubscriptionView]:
    sub = repo.get_subscription(user_id, subscription_id)
    return to_view(sub) if sub else None


def _require_subscription(repo: SubscriptionRepository, user_id: str, subscription_id: int) -> Subscription:
    sub = repo.get_subscription(user_id, subscription_id)
    if sub is None:
        raise SubscriptionNotFound(f"Subscription not found: {subscription_id}")
    return sub


def update_subscription_status(
    repo: SubscriptionRepository, *, user_id: str, subscription_id: int, status: str
) -> SubscriptionView:
    s = (status or "").strip().upper()
    if s not in SUBSCRIPTION_STATUSES:
        raise InvalidSubscriptionInput(f"Unknown status: {status!r}")
    sub = _require_subscription(repo, user_id, subscription_id)
    repo.update_subscription(sub, status=s)
    repo.commit()
    return to_view(sub)


def delete_subscription(repo: SubscriptionRepository, *, user_id: str, subscription_id: int) -> None:
    sub = _require_subscription(repo, user_id, subscription_id)
    repo.delete_subscription(sub)
    repo.commit()


def list_transactions(
    repo: SubscriptionRepository, user_id: str, *, limit: int = 50, cursor: Optional[int] = None
) -> TransactionPage:
    limit = max(1, min(int(limit), 100))
    rows = repo.list_transactions(user_id, limit=limit + 1, before_id=cursor)
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    items = [
        TransactionView(
            id=t.id,
            posted_date=t.posted_date,
            amount=money_2dp(Decimal(str(t.amount))),
            currency=t.currency,
            description=t.description_raw,
            merchant=t.merchant.name if t.merchant else None,
            is_subscription_like=bool(t.is_subscription_like),
        )
        for t in rows
    ]
    return TransactionPage(items=items, next_cursor=next_cursor)


def seed_guides(repo: SubscriptionRepository, path: Path) -> tuple[int, int]:
    """Load cancellation guides from YAML, upserting by slug. Returns (created, updated)."""
    doc = yaml.safe_load(path.read_text()) or {}
    guides = doc.get("guides") if isinstance(doc, dict) else None
    if not isinstance(guides, list):
        raise ValueError(f"Guides file must contain a 'guides' list: {path}")
    created = updated = 0
    for g in guides:
        if not isinstance(g, dict) or not g.get("provider_slug") or not g.get("instructions_md"):
            raise ValueError(f"Guide entries need provider_slug and instructions_md: {g!r}")
        fields = dict(g)
        fields.setdefault("provider_name", str(g["provider_slug"]).title())
        _, was_created = repo.upsert_guide(**fields)
        if was_created:
            created += 1
        else:
            updated += 1
    repo.commit()
    log.info("Seeded guides from %s: created=%d updated=%d", path, created, updated)
    return created, updated


def guide_to_view(guide: SubscriptionGuide) -> GuideView:
    return GuideView(
        id=guide.id,
        provider_name=guide.provider_name,
        provider_slug=guide.provider_slug,
        category=guide.category,
        cancellation_url=guide.cancellation_url,
        instructions_md=guide.instructions_md,
        email_template=guide.email_template,
        last_reviewed_at=guide.last_reviewed_at,
    )


def list_guides(repo: SubscriptionRepository) -> list[GuideView]:
    """All cancellation guides, ordered by provider name."""
    return [guide_to_view(g) for g in repo.list_guides()]


def get_guide(repo: SubscriptionRepository, slug: str) -> Optional[GuideView]:
    guide = repo.get_guide_by_slug((slug or "").strip())
    return guide_to_view(guide) if guide else None
