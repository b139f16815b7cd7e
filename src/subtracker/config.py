from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from src.subtracker.statements.models import DateFormat


DATA_DIR = Path(__file__).resolve().parent / "data"


class StatementConfig(BaseModel):
    date_format: DateFormat = "US"
    max_pdf_bytes: int = 10 * 1024 * 1024
    min_text_chars: int = 100  # below this the document is treated as scanned/image-only
    min_page_chars: int = 20  # pages below this are OCR candidates
    ocr_enabled: bool = False
    filter_known_providers: bool = True


class DetectionConfig(BaseModel):
    gap_tolerance_days: float = 5
    weekly_max_days: float = 10
    monthly_max_days: float = 35
    quarterly_max_days: float = 100


class SubTrackerConfig(BaseModel):
    database_url: Optional[str] = None  # defaults to DATABASE_URL / data/subtracker.db
    default_currency: str = "USD"
    statements: StatementConfig = Field(default_factory=StatementConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    providers_path: Optional[str] = None
    guides_path: Optional[str] = None

    def resolved_providers_path(self) -> Path:
        return Path(self.providers_path) if self.providers_path else DATA_DIR / "subscription_providers.yaml"

    def resolved_guides_path(self) -> Path:
        return Path(self.guides_path) if self.guides_path else DATA_DIR / "guides.yaml"


def _candidate_paths() -> list[Path]:
    paths = [Path("subtracker.yaml")]
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".subtracker" / "subtracker.yaml")
    return paths


def load_subtracker_config(path: Optional[Path] = None) -> tuple[SubTrackerConfig, Optional[str]]:
    candidates = [path] if path else _candidate_paths()
    for p in candidates:
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return SubTrackerConfig.model_validate(data.get("subtracker") or data), str(p)
    return SubTrackerConfig(), None
