from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from src.subtracker.cli import subtracker_app


STATEMENT = Path(__file__).resolve().parent / "fixtures" / "subtracker" / "statement_q1.txt"


def _json_tail(output: str):
    # Commands print a single JSON document last; anything before it is informational.
    start = min(i for i in (output.find("{"), output.find("[")) if i >= 0)
    return json.loads(output[start:])


def test_import_text_then_list_subscriptions(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    runner = CliRunner()

    res = runner.invoke(subtracker_app, ["import-text", "--file", str(STATEMENT), "--user", "user-1"])
    assert res.exit_code == 0, res.output
    payload = _json_tail(res.stdout)
    assert payload["inserted"] == 6
    assert payload["detection"]["created"] == 2

    res = runner.invoke(subtracker_app, ["subscriptions", "--user", "user-1"])
    assert res.exit_code == 0, res.output
    merchants = sorted(s["merchant"] for s in _json_tail(res.stdout))
    assert merchants == ["NETFLIX", "SPOTIFY USA"]

    res = runner.invoke(subtracker_app, ["recalculate", "--user", "user-1"])
    assert res.exit_code == 0, res.output
    assert _json_tail(res.stdout)["updated"] == 2


def test_import_text_without_transactions_exits_nonzero(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    empty = tmp_path / "empty.txt"
    empty.write_text("Thank you for banking with us.\n")

    res = CliRunner().invoke(subtracker_app, ["import-text", "--file", str(empty), "--user", "user-1"])
    assert res.exit_code == 2


def test_guides_commands(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    runner = CliRunner()

    assert runner.invoke(subtracker_app, ["seed-guides"]).exit_code == 0
    res = runner.invoke(subtracker_app, ["guides"])
    assert res.exit_code == 0, res.output
    assert [g["provider_slug"] for g in _json_tail(res.stdout)] == ["netflix", "spotify"]

    res = runner.invoke(subtracker_app, ["guide", "--slug", "spotify"])
    assert res.exit_code == 0, res.output
    assert _json_tail(res.stdout)["provider_name"] == "Spotify"

    assert runner.invoke(subtracker_app, ["guide", "--slug", "hulu"]).exit_code == 2


def test_add_subscription_rejects_non_finite_amount(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    runner = CliRunner()

    for value in ("nan", "Infinity"):
        res = runner.invoke(subtracker_app, ["add-subscription", "--user", "user-1", "--merchant", "Gym", "--amount", value])
        assert res.exit_code == 2
        assert res.exception is None or isinstance(res.exception, SystemExit)
