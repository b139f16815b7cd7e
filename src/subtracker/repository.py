"""
Persistence for the subscription tracker.

Everything that touches the database goes through `SubscriptionRepository`; detection and import
code only see its methods, so a test double can replace it wholesale.
"""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from src.db.models import ImportBatch, Merchant, Subscription, SubscriptionGuide, Transaction
from src.subtracker.models import TransactionRecord, UserTransactionRow
from src.utils.time import utcnow


log = logging.getLogger(__name__)

_SUBSCRIPTION_UPDATABLE = {
    "status",
    "average_amount",
    "currency",
    "billing_interval",
    "next_expected_date",
    "first_seen",
    "last_seen",
    "guide_id",
    "from_manual",
}


class SubscriptionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # --- merchants ---

    def find_merchant_by_normalized_name(self, normalized: str) -> Optional[Merchant]:
        return self.session.query(Merchant).filter(Merchant.normalized == normalized).one_or_none()

    def create_merchant(self, *, name: str, normalized: str) -> Merchant:
        merchant = Merchant(name=(name or normalized).strip()[:255], normalized=normalized)
        self.session.add(merchant)
        self.session.flush()
        return merchant

    def find_or_create_merchant(self, *, name: str, normalized: str) -> Merchant:
        existing = self.find_merchant_by_normalized_name(normalized)
        if existing is not None:
            return existing
        try:
            with self.session.begin_nested():
                return self.create_merchant(name=name, normalized=normalized)
        except IntegrityError:
            # Another writer created it between our read and insert.
            log.debug("Merchant %r created concurrently; re-reading", normalized)
            merchant = self.find_merchant_by_normalized_name(normalized)
            if merchant is None:
                raise
            return merchant

    # --- transactions ---

    def create_import_batch(
        self,
        *,
        user_id: str,
        source: str,
        file_name: str,
        file_hash: str,
        row_count: int,
    ) -> ImportBatch:
        batch = ImportBatch(
            user_id=user_id,
            source=source,
            file_name=file_name[:260],
            file_hash=file_hash,
            row_count=row_count,
        )
        self.session.add(batch)
        self.session.flush()
        return batch

    def find_transactions_by_user(self, user_id: str) -> list[UserTransactionRow]:
        rows = self.session.execute(
            select(
                Transaction.merchant_id,
                Transaction.merchant_norm,
                Transaction.amount,
                Transaction.posted_date,
                Transaction.currency,
            )
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.posted_date.asc(), Transaction.id.asc())
        ).all()
        return [
            UserTransactionRow(
                merchant_id=r.merchant_id,
                merchant_norm=r.merchant_norm,
                amount=Decimal(str(r.amount)),
                posted_date=r.posted_date,
                currency=r.currency,
            )
            for r in rows
        ]

    def insert_transactions(self, records: Iterable[TransactionRecord]) -> int:
        count = 0
        for rec in records:
            self.session.add(
                Transaction(
                    user_id=rec.user_id,
                    import_batch_id=rec.import_batch_id,
                    posted_date=rec.posted_date,
                    amount=Decimal(rec.amount),
                    currency=rec.currency,
                    description_raw=rec.description_raw,
                    merchant_norm=rec.merchant_norm,
                    merchant_id=rec.merchant_id,
                    is_subscription_like=rec.is_subscription_like,
                )
            )
            count += 1
        self.session.flush()
        return count

    def list_transactions(self, user_id: str, *, limit: int = 50, before_id: Optional[int] = None) -> list[Transaction]:
        q = (
            self.session.query(Transaction)
            .options(joinedload(Transaction.merchant))
            .filter(Transaction.user_id == user_id)
        )
        if before_id is not None:
            anchor = self.session.get(Transaction, before_id)
            if anchor is None:
                return []
            # Keyset on (posted_date, id) to match the sort order.
            q = q.filter(
                or_(
                    Transaction.posted_date < anchor.posted_date,
                    and_(Transaction.posted_date == anchor.posted_date, Transaction.id < anchor.id),
                )
            )
        return q.order_by(Transaction.posted_date.desc(), Transaction.id.desc()).limit(limit).all()

    # --- subscriptions ---

    def find_subscription_by_user_and_merchant(self, user_id: str, merchant_id: int) -> Optional[Subscription]:
        return (
            self.session.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.merchant_id == merchant_id)
            .one_or_none()
        )

    def insert_subscription(
        self,
        *,
        user_id: str,
        merchant_id: int,
        average_amount: Decimal,
        currency: str,
        billing_interval: str,
        first_seen: dt.date,
        last_seen: dt.date,
        next_expected_date: Optional[dt.date],
        from_manual: bool,
        guide_id: Optional[int] = None,
        status: str = "ACTIVE",
    ) -> Subscription:
        sub = Subscription(
            user_id=user_id,
            merchant_id=merchant_id,
            status=status,
            average_amount=average_amount,
            currency=currency,
            billing_interval=billing_interval,
            first_seen=first_seen,
            last_seen=last_seen,
            next_expected_date=next_expected_date,
            from_manual=from_manual,
            guide_id=guide_id,
        )
        self.session.add(sub)
        self.session.flush()
        return sub

    def update_subscription(self, sub: Subscription, **fields: Any) -> Subscription:
        unknown = set(fields) - _SUBSCRIPTION_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update subscription fields: {sorted(unknown)}")
        for k, v in fields.items():
            setattr(sub, k, v)
        sub.updated_at = utcnow()
        self.session.flush()
        return sub

    def get_subscription(self, user_id: str, subscription_id: int) -> Optional[Subscription]:
        return (
            self.session.query(Subscription)
            .options(joinedload(Subscription.merchant), joinedload(Subscription.guide))
            .filter(Subscription.id == subscription_id, Subscription.user_id == user_id)
            .one_or_none()
        )

    def list_subscriptions(self, user_id: str) -> list[Subscription]:
        return (
            self.session.query(Subscription)
            .options(joinedload(Subscription.merchant), joinedload(Subscription.guide))
            .filter(Subscription.user_id == user_id)
            .order_by(
                Subscription.next_expected_date.is_(None),
                Subscription.next_expected_date.asc(),
                Subscription.id.asc(),
            )
            .all()
        )

    def delete_subscription(self, sub: Subscription) -> None:
        self.session.delete(sub)
        self.session.flush()

    # --- guides ---

    def find_guide_by_slug(self, slug: str) -> Optional[SubscriptionGuide]:
        return (
            self.session.query(SubscriptionGuide)
            .filter(func.lower(SubscriptionGuide.provider_slug) == (slug or "").lower())
            .order_by(SubscriptionGuide.id.asc())
            .first()
        )

    def find_guide_by_id(self, guide_id: int) -> Optional[SubscriptionGuide]:
        return self.session.get(SubscriptionGuide, guide_id)

    def get_guide_by_slug(self, slug: str) -> Optional[SubscriptionGuide]:
        # Exact slug; detection uses the case-insensitive `find_guide_by_slug`.
        return self.session.query(SubscriptionGuide).filter(SubscriptionGuide.provider_slug == slug).one_or_none()

    def list_guides(self) -> list[SubscriptionGuide]:
        return (
            self.session.query(SubscriptionGuide)
            .order_by(SubscriptionGuide.provider_name.asc(), SubscriptionGuide.id.asc())
            .all()
        )

    def upsert_guide(self, **fields: Any) -> tuple[SubscriptionGuide, bool]:
        slug = str(fields["provider_slug"]).strip()
        guide = self.get_guide_by_slug(slug)
        created = guide is None
        if guide is None:
            guide = SubscriptionGuide(provider_slug=slug)
            self.session.add(guide)
        for k in ("provider_name", "category", "cancellation_url", "instructions_md", "email_template"):
            if k in fields:
                setattr(guide, k, fields[k])
        guide.last_reviewed_at = utcnow()
        self.session.flush()
        return guide, created

    # --- unit of work ---

    def savepoint(self):
        return self.session.begin_nested()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
