from __future__ import annotations

from src.subtracker.importers.base import RowImporter
from src.subtracker.importers.generic_csv import GenericCSVImporter


def default_importers() -> list[RowImporter]:
    return [GenericCSVImporter()]


def get_importer(format_name: str | None = None) -> RowImporter:
    name = (format_name or GenericCSVImporter.format_name).strip()
    for imp in default_importers():
        if imp.format_name == name:
            return imp
    raise ValueError(f"Unknown format: {name}")
