from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.db.types import UTCDateTime
from src.utils.time import utcnow


class Base(DeclarativeBase):
    pass


SubscriptionStatus = Enum("ACTIVE", "CANCELLED", "PENDING_CANCEL", name="subscription_status")
ImportSource = Enum("CSV", "PDF", "TEXT", name="import_source")


class Merchant(Base):
    __tablename__ = "merchants"
    __table_args__ = (UniqueConstraint("normalized"), Index("ix_merchants_normalized", "normalized"))

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(255))
    website: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class ImportBatch(Base):
    __tablename__ = "import_batches"
    __table_args__ = (Index("ix_import_batches_user", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str] = mapped_column(ImportSource, nullable=False, default="CSV")
    file_name: Mapped[str] = mapped_column(String(260), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inserted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "posted_date"),
        Index("ix_transactions_merchant_norm", "merchant_norm"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    import_batch_id: Mapped[Optional[int]] = mapped_column(ForeignKey("import_batches.id"))
    posted_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # debit negative, credit positive
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USD")
    description_raw: Mapped[str] = mapped_column(Text, nullable=False)
    merchant_norm: Mapped[Optional[str]] = mapped_column(String(255))
    merchant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("merchants.id"))
    is_subscription_like: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    merchant: Mapped[Optional["Merchant"]] = relationship()
    import_batch: Mapped[Optional["ImportBatch"]] = relationship()


class SubscriptionGuide(Base):
    __tablename__ = "subscription_guides"
    __table_args__ = (UniqueConstraint("provider_slug"), Index("ix_subscription_guides_slug", "provider_slug"))

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_slug: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(255))
    cancellation_url: Mapped[Optional[str]] = mapped_column(String(500))
    instructions_md: Mapped[str] = mapped_column(Text, nullable=False)
    email_template: Mapped[Optional[str]] = mapped_column(Text)
    last_reviewed_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "merchant_id"),
        Index("ix_subscriptions_user", "user_id"),
        Index("ix_subscriptions_merchant", "merchant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    merchant_id: Mapped[int] = mapped_column(ForeignKey("merchants.id"), nullable=False)
    status: Mapped[str] = mapped_column(SubscriptionStatus, nullable=False, default="ACTIVE")
    average_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    billing_interval: Mapped[str] = mapped_column(String(50), nullable=False)  # weekly|monthly|quarterly|annual
    next_expected_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    first_seen: Mapped[dt.date] = mapped_column(Date, nullable=False)
    last_seen: Mapped[dt.date] = mapped_column(Date, nullable=False)
    from_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    guide_id: Mapped[Optional[int]] = mapped_column(ForeignKey("subscription_guides.id"))
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    merchant: Mapped["Merchant"] = relationship()
    guide: Mapped[Optional["SubscriptionGuide"]] = relationship()
