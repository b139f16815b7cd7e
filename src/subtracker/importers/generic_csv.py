from __future__ import annotations

from src.subtracker.importers.base import RowImporter, RowMappingResult
from src.subtracker.normalize import parse_amount, parse_date
from src.subtracker.statements.models import RawTransactionCandidate


class GenericCSVImporter(RowImporter):
    """Columns: date, amount, description and optionally merchant and currency."""

    format_name = "generic_csv"

    def map_rows(self, *, rows: list[dict[str, str]], default_currency: str) -> RowMappingResult:
        out = RowMappingResult()
        for idx, r in enumerate(rows, start=2):
            raw_date = r.get("date", "")
            raw_amount = r.get("amount", "")
            description = r.get("description", "").strip()
            if not raw_date or not raw_amount or not description:
                out.skip(idx, "missing date, amount or description")
                continue
            try:
                posted = parse_date(raw_date)
                amount = parse_amount(raw_amount)
            except ValueError as e:
                out.skip(idx, str(e))
                continue
            currency = r.get("currency", "").strip().upper() or default_currency
            out.candidates.append(
                RawTransactionCandidate(
                    date=posted,
                    amount=amount,
                    description=description,
                    currency=currency,
                    merchant=r.get("merchant", "").strip() or None,
                )
            )
        return out
