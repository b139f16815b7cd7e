from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from src.db.models import Subscription
from src.subtracker.config import SubTrackerConfig
from src.subtracker.exceptions import GuideNotFound, InvalidSubscriptionInput, SubscriptionNotFound
from src.subtracker.models import TransactionRecord
from src.subtracker.recurring import detect_subscriptions
from src.subtracker.repository import SubscriptionRepository
from src.subtracker.subscriptions import (
    create_manual_subscription,
    delete_subscription,
    get_guide,
    get_subscription,
    list_guides,
    list_subscriptions,
    list_transactions,
    seed_guides,
    update_subscription_status,
)


TODAY = dt.date(2024, 5, 10)


def _seed_monthly(repo: SubscriptionRepository, user_id: str, merchant: str) -> None:
    m = repo.find_or_create_merchant(name=merchant, normalized=merchant.lower())
    repo.insert_transactions(
        TransactionRecord(
            user_id=user_id,
            posted_date=d,
            amount="-15.99",
            currency="USD",
            description_raw=merchant.upper(),
            merchant_norm=merchant.lower(),
            merchant_id=m.id,
            is_subscription_like=True,
        )
        for d in (dt.date(2024, 1, 1), dt.date(2024, 2, 1), dt.date(2024, 3, 3))
    )
    repo.commit()


def test_manual_subscription_defaults_next_date(repo: SubscriptionRepository):
    sub = create_manual_subscription(
        repo,
        user_id="user-1",
        merchant_name="  The Gym  ",
        amount=Decimal("39.5"),
        billing_interval="monthly",
        today=TODAY,
    )
    assert sub.from_manual is True
    assert sub.status == "ACTIVE"
    assert sub.average_amount == Decimal("39.50")
    assert sub.next_expected_date == TODAY + dt.timedelta(days=30)
    assert sub.merchant.normalized == "the gym"

    annual = create_manual_subscription(
        repo, user_id="user-1", merchant_name="Cloud Backup", amount=Decimal("99"), billing_interval="annual", today=TODAY
    )
    assert annual.next_expected_date == TODAY + dt.timedelta(days=365)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"merchant_name": "", "amount": Decimal("5"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("0"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("-3"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("NaN"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("sNaN"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("Infinity"), "billing_interval": "monthly"},
        {"merchant_name": "Gym", "amount": Decimal("5"), "billing_interval": "daily"},
        {"merchant_name": "!!!", "amount": Decimal("5"), "billing_interval": "monthly"},
    ],
)
def test_manual_subscription_rejects_bad_input(repo: SubscriptionRepository, kwargs):
    with pytest.raises(InvalidSubscriptionInput):
        create_manual_subscription(repo, user_id="user-1", **kwargs)
    assert repo.session.query(Subscription).count() == 0


def test_manual_subscription_unknown_guide(repo: SubscriptionRepository):
    with pytest.raises(GuideNotFound):
        create_manual_subscription(
            repo, user_id="user-1", merchant_name="Gym", amount=Decimal("5"), billing_interval="monthly", guide_id=999
        )


def test_manual_duplicate_is_rejected(repo: SubscriptionRepository):
    create_manual_subscription(repo, user_id="user-1", merchant_name="Gym", amount=Decimal("5"), billing_interval="monthly")
    with pytest.raises(InvalidSubscriptionInput):
        create_manual_subscription(repo, user_id="user-1", merchant_name="GYM", amount=Decimal("6"), billing_interval="monthly")
    # Same merchant for another user is fine.
    create_manual_subscription(repo, user_id="user-2", merchant_name="Gym", amount=Decimal("5"), billing_interval="monthly")
    assert repo.session.query(Subscription).count() == 2


def test_manual_entry_takes_over_detected_subscription(repo: SubscriptionRepository):
    _seed_monthly(repo, "user-1", "Netflix")
    detect_subscriptions(repo, "user-1")
    [detected] = list_subscriptions(repo, "user-1")
    assert detected.from_manual is False

    sub = create_manual_subscription(
        repo,
        user_id="user-1",
        merchant_name="Netflix",
        amount=Decimal("17.99"),
        billing_interval="monthly",
        next_expected_date=dt.date(2024, 6, 1),
    )
    assert sub.id == detected.id
    assert sub.from_manual is True

    res = detect_subscriptions(repo, "user-1")
    assert res.skipped_manual == 1
    view = get_subscription(repo, "user-1", sub.id)
    assert view is not None
    assert view.average_amount == Decimal("17.99")
    assert view.next_expected_date == dt.date(2024, 6, 1)


def test_status_update_and_delete(repo: SubscriptionRepository):
    sub = create_manual_subscription(repo, user_id="user-1", merchant_name="Gym", amount=Decimal("5"), billing_interval="weekly")

    view = update_subscription_status(repo, user_id="user-1", subscription_id=sub.id, status="pending_cancel")
    assert view.status == "PENDING_CANCEL"

    with pytest.raises(InvalidSubscriptionInput):
        update_subscription_status(repo, user_id="user-1", subscription_id=sub.id, status="PAUSED")
    with pytest.raises(SubscriptionNotFound):
        update_subscription_status(repo, user_id="user-2", subscription_id=sub.id, status="CANCELLED")

    delete_subscription(repo, user_id="user-1", subscription_id=sub.id)
    assert get_subscription(repo, "user-1", sub.id) is None
    with pytest.raises(SubscriptionNotFound):
        delete_subscription(repo, user_id="user-1", subscription_id=sub.id)


def test_list_subscriptions_orders_by_next_date(repo: SubscriptionRepository):
    create_manual_subscription(
        repo, user_id="user-1", merchant_name="Later", amount=Decimal("1"), billing_interval="monthly",
        next_expected_date=dt.date(2024, 9, 1),
    )
    create_manual_subscription(
        repo, user_id="user-1", merchant_name="Sooner", amount=Decimal("1"), billing_interval="monthly",
        next_expected_date=dt.date(2024, 7, 1),
    )
    assert [v.merchant for v in list_subscriptions(repo, "user-1")] == ["Sooner", "Later"]
    assert list_subscriptions(repo, "user-2") == []


def test_transactions_are_paged_newest_first(repo: SubscriptionRepository):
    _seed_monthly(repo, "user-1", "Netflix")
    _seed_monthly(repo, "user-2", "Hulu")

    page1 = list_transactions(repo, "user-1", limit=2)
    assert [t.posted_date for t in page1.items] == [dt.date(2024, 3, 3), dt.date(2024, 2, 1)]
    assert page1.next_cursor is not None

    page2 = list_transactions(repo, "user-1", limit=2, cursor=page1.next_cursor)
    assert [t.posted_date for t in page2.items] == [dt.date(2024, 1, 1)]
    assert page2.next_cursor is None
    assert page2.items[0].merchant == "Netflix"
    assert page2.items[0].amount == Decimal("-15.99")


def test_seed_guides_upserts_by_slug(repo: SubscriptionRepository, tmp_path):
    path = SubTrackerConfig().resolved_guides_path()
    assert seed_guides(repo, path) == (2, 0)
    assert seed_guides(repo, path) == (0, 2)
    guide = repo.find_guide_by_slug("NETFLIX")
    assert guide is not None
    assert guide.cancellation_url.startswith("https://")

    bad = tmp_path / "guides.yaml"
    bad.write_text("guides:\n  - provider_name: Nameless\n")
    with pytest.raises(ValueError):
        seed_guides(repo, bad)


def test_guides_are_listed_by_provider_name_and_fetched_by_exact_slug(repo: SubscriptionRepository):
    seed_guides(repo, SubTrackerConfig().resolved_guides_path())
    repo.upsert_guide(provider_name="Apple TV", provider_slug="apple-tv", instructions_md="Open Settings.")
    repo.commit()

    guides = list_guides(repo)
    assert [g.provider_name for g in guides] == ["Apple TV", "Netflix", "Spotify"]
    assert guides[1].cancellation_url == "https://www.netflix.com/cancelplan"

    netflix = get_guide(repo, "netflix")
    assert netflix is not None
    assert netflix.provider_name == "Netflix"
    assert netflix.category == "Streaming"
    assert "Cancel Membership" in netflix.instructions_md
    assert get_guide(repo, "NETFLIX") is None
    assert get_guide(repo, "hulu") is None
