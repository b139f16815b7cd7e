from __future__ import annotations

import logging
from typing import Iterable, Optional, Union

from src.subtracker.config import SubTrackerConfig
from src.subtracker.exceptions import NoTransactionsExtracted, StatementTooLarge
from src.subtracker.extraction import TextExtractor
from src.subtracker.importers import get_importer
from src.subtracker.importers.base import read_csv_rows
from src.subtracker.models import ImportResult, TransactionRecord
from src.subtracker.normalize import (
    exceeds_amount_limit,
    format_amount,
    normalize_merchant_name,
    sha256_bytes,
    sha256_text,
)
from src.subtracker.providers import ProviderAllowlist, load_provider_allowlist
from src.subtracker.recurring import detect_subscriptions
from src.subtracker.repository import SubscriptionRepository
from src.subtracker.statements.models import DateFormat, ParseOptions, RawTransactionCandidate
from src.subtracker.statements.parser import parse_statement
from src.utils.locks import mask_user, user_serial_lock


log = logging.getLogger(__name__)


def looks_like_subscription(candidate: RawTransactionCandidate, allowlist: ProviderAllowlist) -> bool:
    if candidate.transaction_type == "SUBSCRIPTION":
        return True
    return allowlist.matches(candidate.description) or allowlist.matches(candidate.merchant or "")


def build_transaction_records(
    repo: SubscriptionRepository,
    *,
    user_id: str,
    candidates: Iterable[RawTransactionCandidate],
    allowlist: ProviderAllowlist,
    import_batch_id: Optional[int] = None,
) -> tuple[list[TransactionRecord], int]:
    """
    Validate candidates and link merchants. Returns the records and the number dropped because
    the amount does not fit the stored precision.
    """
    records: list[TransactionRecord] = []
    over_limit = 0
    for c in candidates:
        if exceeds_amount_limit(c.amount):
            over_limit += 1
            log.warning("Skipping transaction on %s: amount %s exceeds storage limit", c.date.isoformat(), c.amount)
            continue
        merchant_name = c.merchant or c.description
        normalized = normalize_merchant_name(merchant_name)
        merchant_id = None
        if normalized:
            merchant_id = repo.find_or_create_merchant(name=merchant_name, normalized=normalized).id
        records.append(
            TransactionRecord(
                user_id=user_id,
                posted_date=c.date,
                amount=format_amount(c.amount),
                currency=c.currency,
                description_raw=c.description,
                merchant_norm=normalized or None,
                merchant_id=merchant_id,
                is_subscription_like=looks_like_subscription(c, allowlist),
                import_batch_id=import_batch_id,
            )
        )
    return records, over_limit


def _resolve_allowlist(cfg: SubTrackerConfig, allowlist: Optional[ProviderAllowlist]) -> ProviderAllowlist:
    if allowlist is not None:
        return allowlist
    return load_provider_allowlist(cfg.resolved_providers_path())


def _persist_candidates(
    repo: SubscriptionRepository,
    cfg: SubTrackerConfig,
    *,
    user_id: str,
    source: str,
    file_name: str,
    file_hash: str,
    candidates: list[RawTransactionCandidate],
    row_count: int,
    skipped: int,
    warnings: list[str],
    allowlist: ProviderAllowlist,
    filter_known_providers: bool,
    detect: bool,
) -> ImportResult:
    filtered = 0
    if filter_known_providers:
        kept = [c for c in candidates if looks_like_subscription(c, allowlist)]
        filtered = len(candidates) - len(kept)
        candidates = kept

    with user_serial_lock(user_id):
        try:
            batch = repo.create_import_batch(
                user_id=user_id,
                source=source,
                file_name=file_name,
                file_hash=file_hash,
                row_count=row_count,
            )
            records, over_limit = build_transaction_records(
                repo,
                user_id=user_id,
                candidates=candidates,
                allowlist=allowlist,
                import_batch_id=batch.id,
            )
            inserted = repo.insert_transactions(records)
            batch.inserted = inserted
            batch.skipped = skipped + over_limit + filtered
            repo.commit()
        except Exception:
            repo.rollback()
            raise

    if over_limit:
        warnings = [*warnings, f"{over_limit} transaction(s) skipped: amount exceeds 99,999,999.99"]
    log.info(
        "Imported %d/%d %s rows for user %s (skipped=%d over_limit=%d filtered=%d)",
        inserted,
        row_count,
        source,
        mask_user(user_id),
        skipped,
        over_limit,
        filtered,
    )
    result = ImportResult(
        user_id=user_id,
        source=source,
        file_name=file_name,
        file_hash=file_hash,
        batch_id=batch.id,
        row_count=row_count,
        inserted=inserted,
        skipped=skipped,
        over_limit=over_limit,
        filtered_unknown_provider=filtered,
        warnings=warnings,
    )
    if detect:
        result.detection = detect_subscriptions(repo, user_id, cfg.detection)
    return result


def import_csv_text(
    repo: SubscriptionRepository,
    cfg: SubTrackerConfig,
    *,
    user_id: str,
    content: str,
    file_name: str = "upload.csv",
    format_name: Optional[str] = None,
    allowlist: Optional[ProviderAllowlist] = None,
    detect: bool = True,
) -> ImportResult:
    """
    Import CSV rows with columns date, amount, description[, merchant]. Rows missing a field or
    with an unparseable date/amount are skipped and counted, never raised.
    """
    _, rows = read_csv_rows(content)
    mapped = get_importer(format_name).map_rows(rows=rows, default_currency=cfg.default_currency)
    return _persist_candidates(
        repo,
        cfg,
        user_id=user_id,
        source="CSV",
        file_name=file_name,
        file_hash=sha256_text(content),
        candidates=mapped.candidates,
        row_count=len(rows),
        skipped=mapped.skipped,
        warnings=mapped.warnings,
        allowlist=_resolve_allowlist(cfg, allowlist),
        filter_known_providers=False,
        detect=detect,
    )


def import_statement_text(
    repo: SubscriptionRepository,
    cfg: SubTrackerConfig,
    *,
    user_id: str,
    text: str,
    date_format: Optional[DateFormat] = None,
    currency: Optional[str] = None,
    source: str = "TEXT",
    file_name: str = "statement.txt",
    file_hash: Optional[str] = None,
    allowlist: Optional[ProviderAllowlist] = None,
    detect: bool = True,
) -> ImportResult:
    options = ParseOptions(
        currency=(currency or cfg.default_currency).strip().upper(),
        date_format=date_format or cfg.statements.date_format,
    )
    candidates = parse_statement(text, options)
    if not candidates:
        raise NoTransactionsExtracted()
    return _persist_candidates(
        repo,
        cfg,
        user_id=user_id,
        source=source,
        file_name=file_name,
        file_hash=file_hash or sha256_text(text),
        candidates=candidates,
        row_count=len(candidates),
        skipped=0,
        warnings=[],
        allowlist=_resolve_allowlist(cfg, allowlist),
        filter_known_providers=cfg.statements.filter_known_providers,
        detect=detect,
    )


def scrub_buffer(buffer: bytearray) -> None:
    buffer[:] = bytes(len(buffer))


def import_statement_pdf(
    repo: SubscriptionRepository,
    cfg: SubTrackerConfig,
    *,
    user_id: str,
    buffer: Union[bytearray, bytes],
    extractor: TextExtractor,
    file_name: str = "statement.pdf",
    date_format: Optional[DateFormat] = None,
    currency: Optional[str] = None,
    allowlist: Optional[ProviderAllowlist] = None,
    detect: bool = True,
) -> ImportResult:
    """
    Extract text from an uploaded statement and import its transactions.

    The document buffer is zeroed in place as soon as extraction finishes (or fails); pass a
    bytearray so the caller's copy is the one scrubbed.
    """
    if not isinstance(buffer, bytearray):
        buffer = bytearray(buffer)
    if len(buffer) > cfg.statements.max_pdf_bytes:
        size = len(buffer)
        scrub_buffer(buffer)
        raise StatementTooLarge(f"Statement is {size} bytes; the limit is {cfg.statements.max_pdf_bytes} bytes.")
    file_hash = sha256_bytes(buffer)
    try:
        text = extractor.extract_text(buffer)
    finally:
        scrub_buffer(buffer)
    return import_statement_text(
        repo,
        cfg,
        user_id=user_id,
        text=text,
        date_format=date_format,
        currency=currency,
        source="PDF",
        file_name=file_name,
        file_hash=file_hash,
        allowlist=allowlist,
        detect=detect,
    )
