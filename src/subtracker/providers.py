from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import yaml


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderAllowlist:
    version: int
    keywords: tuple[str, ...]
    pattern: Optional[re.Pattern[str]]

    @classmethod
    def from_keywords(cls, keywords: Iterable[str], *, version: int = 0) -> "ProviderAllowlist":
        cleaned = tuple(sorted({str(k).strip().lower() for k in keywords if str(k or "").strip()}, key=len, reverse=True))
        if not cleaned:
            return cls(version=version, keywords=(), pattern=None)
        # Lookarounds instead of \b so keywords ending in "+" or "&" still match.
        alternation = "|".join(re.escape(k) for k in cleaned)
        pattern = re.compile(rf"(?<![a-z0-9])(?:{alternation})(?![a-z0-9])", re.IGNORECASE)
        return cls(version=version, keywords=cleaned, pattern=pattern)

    def match(self, text: str) -> Optional[str]:
        if self.pattern is None:
            return None
        m = self.pattern.search(text or "")
        return m.group(0).lower() if m else None

    def matches(self, text: str) -> bool:
        return self.match(text) is not None


def load_provider_allowlist(path: Path) -> ProviderAllowlist:
    doc = yaml.safe_load(path.read_text()) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"Provider allowlist must be a mapping: {path}")
    providers = doc.get("providers") or []
    if not isinstance(providers, list):
        raise ValueError(f"'providers' must be a list: {path}")
    allowlist = ProviderAllowlist.from_keywords(providers, version=int(doc.get("version") or 0))
    log.debug("Loaded %d provider keywords (version %s) from %s", len(allowlist.keywords), allowlist.version, path)
    return allowlist
