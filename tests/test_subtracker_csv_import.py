from __future__ import annotations

import datetime as dt
from decimal import Decimal
from pathlib import Path

import pytest

from src.db.models import ImportBatch, Transaction
from src.subtracker.config import SubTrackerConfig
from src.subtracker.importers import get_importer
from src.subtracker.importers.base import read_csv_rows
from src.subtracker.imports import import_csv_text
from src.subtracker.repository import SubscriptionRepository


SAMPLE = Path(__file__).resolve().parent / "fixtures" / "subtracker" / "transactions_sample.csv"


def test_generic_csv_maps_valid_rows_and_counts_malformed():
    _, rows = read_csv_rows(SAMPLE.read_text())
    mapped = get_importer().map_rows(rows=rows, default_currency="USD")

    assert len(rows) == 10
    assert len(mapped.candidates) == 6
    assert mapped.skipped == len(rows) - len(mapped.candidates)
    assert len(mapped.warnings) == 4

    first = mapped.candidates[0]
    assert first.date == dt.date(2024, 1, 1)
    assert first.amount == Decimal("-15.99")
    assert first.description == "NETFLIX.COM 866-579-7172"
    assert first.merchant == "Netflix"

    payroll = next(c for c in mapped.candidates if c.description == "ACME PAYROLL")
    assert payroll.amount == Decimal("1204.50")
    assert payroll.merchant is None


def test_csv_headers_are_case_insensitive_and_currency_column_wins():
    content = "Date,Amount,Description,Currency\n2024-03-01,  12.00 , Gym Club  ,eur\n"
    _, rows = read_csv_rows(content)
    mapped = get_importer("generic_csv").map_rows(rows=rows, default_currency="USD")
    assert len(mapped.candidates) == 1
    c = mapped.candidates[0]
    assert c.description == "Gym Club"
    assert c.currency == "EUR"
    assert c.amount == Decimal("12.00")


def test_unknown_format_raises():
    with pytest.raises(ValueError):
        get_importer("bank_of_nowhere")


def test_import_csv_persists_signed_amounts_and_detects(repo: SubscriptionRepository):
    res = import_csv_text(repo, SubTrackerConfig(), user_id="user-1", content=SAMPLE.read_text(), file_name=SAMPLE.name)

    assert res.source == "CSV"
    assert res.row_count == 10
    assert res.inserted == 6
    assert res.skipped == 4
    assert res.filtered_unknown_provider == 0
    assert res.detection is not None
    assert res.detection.created == 2

    txns = repo.session.query(Transaction).filter(Transaction.user_id == "user-1").all()
    assert len(txns) == 6
    amounts = sorted(Decimal(str(t.amount)) for t in txns)
    assert amounts[0] == Decimal("-129.00")
    assert amounts[-1] == Decimal("1204.50")
    netflix = [t for t in txns if t.merchant_norm == "netflix"]
    assert len(netflix) == 3
    assert all(t.is_subscription_like for t in netflix)
    assert len({t.merchant_id for t in netflix}) == 1

    batch = repo.session.query(ImportBatch).one()
    assert (batch.row_count, batch.inserted, batch.skipped) == (10, 6, 4)
    assert batch.source == "CSV"
    assert len(batch.file_hash) == 64

    subs = {s.merchant.normalized: s for s in repo.list_subscriptions("user-1")}
    assert subs["netflix"].next_expected_date == dt.date(2024, 4, 3)
    assert subs["cloud backup co"].billing_interval == "annual"
    assert subs["cloud backup co"].next_expected_date == dt.date(2025, 6, 1)


def test_amounts_over_storage_limit_are_dropped_with_warning(repo: SubscriptionRepository):
    content = "date,amount,description\n2024-01-01,-9.99,HULU\n2024-01-02,123456789.00,WIRE IN\n"
    res = import_csv_text(repo, SubTrackerConfig(), user_id="user-1", content=content, detect=False)
    assert res.inserted == 1
    assert res.over_limit == 1
    assert any("exceeds" in w for w in res.warnings)
    assert res.detection is None


def test_import_without_detection_leaves_subscriptions_alone(repo: SubscriptionRepository):
    import_csv_text(repo, SubTrackerConfig(), user_id="user-1", content=SAMPLE.read_text(), detect=False)
    assert repo.list_subscriptions("user-1") == []
