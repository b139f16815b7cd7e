from __future__ import annotations

import csv
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from src.subtracker.statements.models import RawTransactionCandidate


def sniff_dialect(sample: str) -> type[csv.Dialect]:
    try:
        return csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"])
    except csv.Error:
        return csv.excel


def read_csv_rows(content: str) -> tuple[list[str], list[dict[str, str]]]:
    """Header names are lowercased so column lookup is case-insensitive."""
    sample = content[:20000]
    dialect = sniff_dialect(sample)
    reader = csv.DictReader(io.StringIO(content), dialect=dialect)
    headers = [h.strip().lower() for h in (reader.fieldnames or []) if h]
    rows: list[dict[str, str]] = []
    for r in reader:
        rows.append({(k or "").strip().lower(): (v or "").strip() for k, v in r.items() if isinstance(k, str)})
    return headers, rows


@dataclass
class RowMappingResult:
    candidates: list[RawTransactionCandidate] = field(default_factory=list)
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)

    def skip(self, row_number: int, reason: str) -> None:
        self.skipped += 1
        if len(self.warnings) < 5:
            self.warnings.append(f"Row {row_number}: skipped: {reason}")


class RowImporter(ABC):
    format_name: str

    @abstractmethod
    def map_rows(self, *, rows: list[dict[str, str]], default_currency: str) -> RowMappingResult: ...
