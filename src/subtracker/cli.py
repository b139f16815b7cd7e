from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from src.db.init_db import init_db
from src.db.session import get_session
from src.subtracker.config import SubTrackerConfig, load_subtracker_config
from src.subtracker.exceptions import GuideNotFound, SubTrackerError
from src.subtracker.extraction import PdfTextExtractor
from src.subtracker.imports import import_csv_text, import_statement_pdf, import_statement_text
from src.subtracker.normalize import parse_date
from src.subtracker.recurring import detect_subscriptions
from src.subtracker.repository import SubscriptionRepository
from src.subtracker.subscriptions import (
    create_manual_subscription,
    delete_subscription,
    get_guide,
    list_guides,
    list_subscriptions,
    list_transactions,
    seed_guides,
    to_view,
    update_subscription_status,
)


subtracker_app = typer.Typer(help="Subscription tracking: import statements, detect and manage subscriptions.")


def _check_runtime() -> None:
    try:
        import sqlalchemy  # noqa: F401
    except Exception as e:
        typer.echo(f"Runtime dependency error: {type(e).__name__}: {e}", err=True)
        raise typer.Exit(code=1)


def _setup(config: Optional[Path]) -> SubTrackerConfig:
    load_dotenv()
    _check_runtime()
    cfg, cfg_path = load_subtracker_config(config)
    if cfg_path:
        typer.echo(f"Using config: {cfg_path}", err=True)
    init_db(cfg.database_url)
    return cfg


def _fail(e: Exception) -> None:
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=2)


def _echo(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@subtracker_app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@subtracker_app.command("init-db")
def init_db_cmd(config: Optional[Path] = typer.Option(None, help="Config YAML path")):
    cfg = _setup(config)
    typer.echo(f"Database ready: {cfg.database_url or 'default'}")


@subtracker_app.command("seed-guides")
def seed_guides_cmd(
    path: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Guides YAML (defaults to config)"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    gp = path or cfg.resolved_guides_path()
    with get_session(cfg.database_url) as session:
        created, updated = seed_guides(SubscriptionRepository(session), gp)
    _echo({"created": created, "updated": updated, "path": str(gp)})


@subtracker_app.command("guides")
def guides_cmd(config: Optional[Path] = typer.Option(None, help="Config YAML path")):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        items = list_guides(SubscriptionRepository(session))
    _echo([g.model_dump(mode="json") for g in items])


@subtracker_app.command("guide")
def guide_cmd(
    slug: str = typer.Option(..., help="Provider slug (e.g., netflix)"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        view = get_guide(SubscriptionRepository(session), slug)
    if view is None:
        _fail(GuideNotFound(f"Guide not found: {slug}"))
    _echo(view.model_dump(mode="json"))


@subtracker_app.command("import-csv")
def import_csv_cmd(
    file: Path = typer.Option(..., exists=True, dir_okay=False, help="CSV with date, amount, description[, merchant]"),
    user: str = typer.Option(..., help="User id"),
    format: str = typer.Option("", help="Format override (e.g., generic_csv)"),
    detect: bool = typer.Option(True, help="Run subscription detection after import"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    content = file.read_text(encoding="utf-8-sig", errors="ignore")
    with get_session(cfg.database_url) as session:
        try:
            res = import_csv_text(
                SubscriptionRepository(session),
                cfg,
                user_id=user.strip(),
                content=content,
                file_name=file.name,
                format_name=format.strip() or None,
                detect=detect,
            )
        except (SubTrackerError, ValueError) as e:
            _fail(e)
    _echo(res.model_dump(mode="json"))


@subtracker_app.command("import-pdf")
def import_pdf_cmd(
    file: Path = typer.Option(..., exists=True, dir_okay=False, help="PDF bank statement"),
    user: str = typer.Option(..., help="User id"),
    date_format: str = typer.Option("", help="US|EU|ISO (defaults to config)"),
    currency: str = typer.Option("", help="Currency code (defaults to config)"),
    ocr: Optional[bool] = typer.Option(None, help="Override OCR for pages without a text layer"),
    detect: bool = typer.Option(True, help="Run subscription detection after import"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    stmt_cfg = cfg.statements if ocr is None else cfg.statements.model_copy(update={"ocr_enabled": ocr})
    extractor = PdfTextExtractor.from_config(stmt_cfg)
    buffer = bytearray(file.read_bytes())
    with get_session(cfg.database_url) as session:
        try:
            res = import_statement_pdf(
                SubscriptionRepository(session),
                cfg,
                user_id=user.strip(),
                buffer=buffer,
                extractor=extractor,
                file_name=file.name,
                date_format=(date_format.strip().upper() or None),
                currency=currency.strip() or None,
                detect=detect,
            )
        except (SubTrackerError, ValueError) as e:
            _fail(e)
    _echo(res.model_dump(mode="json"))


@subtracker_app.command("import-text")
def import_text_cmd(
    file: Path = typer.Option(..., exists=True, dir_okay=False, help="Statement text (e.g. OCR output)"),
    user: str = typer.Option(..., help="User id"),
    date_format: str = typer.Option("", help="US|EU|ISO (defaults to config)"),
    currency: str = typer.Option("", help="Currency code (defaults to config)"),
    detect: bool = typer.Option(True, help="Run subscription detection after import"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        try:
            res = import_statement_text(
                SubscriptionRepository(session),
                cfg,
                user_id=user.strip(),
                text=file.read_text(encoding="utf-8", errors="ignore"),
                date_format=(date_format.strip().upper() or None),
                currency=currency.strip() or None,
                file_name=file.name,
                detect=detect,
            )
        except (SubTrackerError, ValueError) as e:
            _fail(e)
    _echo(res.model_dump(mode="json"))


@subtracker_app.command("recalculate")
def recalculate_cmd(
    user: str = typer.Option(..., help="User id"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        res = detect_subscriptions(SubscriptionRepository(session), user.strip(), cfg.detection)
    _echo(res.model_dump(mode="json"))
    if not res.success:
        raise typer.Exit(code=1)


@subtracker_app.command("subscriptions")
def subscriptions_cmd(
    user: str = typer.Option(..., help="User id"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        items = list_subscriptions(SubscriptionRepository(session), user.strip())
    _echo([i.model_dump(mode="json") for i in items])


@subtracker_app.command("add-subscription")
def add_subscription_cmd(
    user: str = typer.Option(..., help="User id"),
    merchant: str = typer.Option(..., help="Merchant name"),
    amount: str = typer.Option(..., help="Charge amount per period"),
    interval: str = typer.Option("monthly", help="weekly|monthly|quarterly|annual"),
    currency: str = typer.Option("USD", help="Currency code"),
    next_date: str = typer.Option("", help="Next expected charge (YYYY-MM-DD)"),
    guide_id: Optional[int] = typer.Option(None, help="Cancellation guide id"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    try:
        value = Decimal(amount.strip())
    except InvalidOperation:
        raise typer.BadParameter(f"Invalid amount: {amount}")
    try:
        nxt = parse_date(next_date) if next_date.strip() else None
    except ValueError as e:
        raise typer.BadParameter(str(e))
    with get_session(cfg.database_url) as session:
        try:
            sub = create_manual_subscription(
                SubscriptionRepository(session),
                user_id=user.strip(),
                merchant_name=merchant,
                amount=value,
                billing_interval=interval.strip().lower(),
                currency=currency,
                guide_id=guide_id,
                next_expected_date=nxt,
            )
        except SubTrackerError as e:
            _fail(e)
        view = to_view(sub)
    _echo(view.model_dump(mode="json"))


@subtracker_app.command("set-status")
def set_status_cmd(
    user: str = typer.Option(..., help="User id"),
    id: int = typer.Option(..., help="Subscription id"),
    status: str = typer.Option(..., help="ACTIVE|CANCELLED|PENDING_CANCEL"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        try:
            view = update_subscription_status(
                SubscriptionRepository(session), user_id=user.strip(), subscription_id=id, status=status
            )
        except SubTrackerError as e:
            _fail(e)
    _echo(view.model_dump(mode="json"))


@subtracker_app.command("delete-subscription")
def delete_subscription_cmd(
    user: str = typer.Option(..., help="User id"),
    id: int = typer.Option(..., help="Subscription id"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        try:
            delete_subscription(SubscriptionRepository(session), user_id=user.strip(), subscription_id=id)
        except SubTrackerError as e:
            _fail(e)
    _echo({"deleted": id})


@subtracker_app.command("transactions")
def transactions_cmd(
    user: str = typer.Option(..., help="User id"),
    limit: int = typer.Option(50, help="Page size (1-100)"),
    cursor: Optional[int] = typer.Option(None, help="Cursor from a previous page"),
    config: Optional[Path] = typer.Option(None, help="Config YAML path"),
):
    cfg = _setup(config)
    with get_session(cfg.database_url) as session:
        page = list_transactions(SubscriptionRepository(session), user.strip(), limit=limit, cursor=cursor)
    _echo(page.model_dump(mode="json"))


if __name__ == "__main__":
    subtracker_app()
