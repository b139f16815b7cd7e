from __future__ import annotations

from pathlib import Path

import pytest

from src.subtracker.config import SubTrackerConfig, load_subtracker_config
from src.subtracker.providers import ProviderAllowlist, load_provider_allowlist


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    cfg, path = load_subtracker_config()
    assert path is None
    assert cfg.default_currency == "USD"
    assert cfg.statements.date_format == "US"
    assert cfg.statements.max_pdf_bytes == 10 * 1024 * 1024
    assert cfg.detection.gap_tolerance_days == 5
    assert cfg.resolved_providers_path().name == "subscription_providers.yaml"


def test_config_file_with_top_level_key(tmp_path: Path):
    p = tmp_path / "subtracker.yaml"
    p.write_text(
        "subtracker:\n"
        "  default_currency: EUR\n"
        "  statements:\n"
        "    date_format: EU\n"
        "    filter_known_providers: false\n"
        "  detection:\n"
        "    gap_tolerance_days: 3\n"
    )
    cfg, path = load_subtracker_config(p)
    assert path == str(p)
    assert cfg.default_currency == "EUR"
    assert cfg.statements.date_format == "EU"
    assert cfg.statements.filter_known_providers is False
    assert cfg.detection.gap_tolerance_days == 3
    assert cfg.detection.monthly_max_days == 35


def test_bundled_allowlist_loads():
    allowlist = load_provider_allowlist(SubTrackerConfig().resolved_providers_path())
    assert allowlist.version >= 1
    assert "netflix" in allowlist.keywords
    assert allowlist.match("NETFLIX.COM 866-579-7172") == "netflix"
    assert allowlist.matches("Disney+ monthly")
    assert not allowlist.matches("GROCERY MART")


def test_allowlist_matches_whole_words_only():
    allowlist = ProviderAllowlist.from_keywords(["calm", "hbo max", "walmart+"])
    assert allowlist.matches("CALM.COM")
    assert not allowlist.matches("CALMER DAYS CAFE")
    assert allowlist.match("HBO MAX 855") == "hbo max"
    assert allowlist.matches("WALMART+ MEMBER")
    assert ProviderAllowlist.from_keywords([]).match("anything") is None


def test_allowlist_rejects_bad_file(tmp_path: Path):
    p = tmp_path / "providers.yaml"
    p.write_text("providers: netflix\n")
    with pytest.raises(ValueError):
        load_provider_allowlist(p)
