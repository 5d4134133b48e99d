# bytsave/cli/runner.py

"""Headless command implementations for the alert pipeline."""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path

from rich.console import Console
from rich.table import Table

from bytsave.catalog.amazon_catalog import AmazonCatalog
from bytsave.catalog.asin import extract_asin
from bytsave.catalog.snapshot_cache import SnapshotCache
from bytsave.config.settings import Settings
from bytsave.models.decision import ProcessingResult
from bytsave.models.errors import RunInProgressError
from bytsave.models.tracked_item import AlertMode
from bytsave.notify.base import FallbackNotifier, Notifier
from bytsave.notify.rate_limit import RateLimitedNotifier
from bytsave.notify.sendgrid_notifier import SendGridNotifier
from bytsave.notify.smtp_notifier import SmtpNotifier
from bytsave.services.alert_processor import AlertProcessor
from bytsave.services.scheduler import run_periodically
from bytsave.storage.tracker_db import COOLDOWN_CONFIG_KEY, TrackerDB

logger = logging.getLogger("bytsave.cli")

# Stderr console for status messages so stdout stays clean
_err = Console(stderr=True)


def build_notifier() -> Notifier:
    """SendGrid first, SMTP when configured, behind the per-recipient cap."""
    notifiers: list[Notifier] = [SendGridNotifier()]
    if Settings.SMTP_HOST:
        notifiers.append(SmtpNotifier())
    return RateLimitedNotifier(FallbackNotifier(notifiers))


def build_processor(
    db: TrackerDB,
    offline: bool = False,
    notifier: Notifier | None = None,
) -> AlertProcessor:
    """Wire the processor to the SQLite store and live adapters.

    ``offline`` skips the catalog and evaluates stored prices only.
    """
    catalog = None if offline else SnapshotCache(AmazonCatalog())
    return AlertProcessor(
        repository=db,
        notifier=notifier or build_notifier(),
        catalog=catalog,
    )


def print_result(result: ProcessingResult) -> None:
    """Render a run summary (and any errors) to stderr."""
    colour = "green" if result.ok else "yellow"
    _err.print(
        f"[{colour}]✓ {result.alerts_sent} alerts sent "
        f"from {result.items_seen} trackers[/{colour}] "
        f"[dim]({result.suppressed} suppressed, "
        f"{result.cooldown_resets} cooldown resets, "
        f"{result.conflicts} conflicts)[/dim]"
    )
    if result.cancelled:
        _err.print(
            f"[yellow]Run cancelled, {result.skipped} trackers "
            "skipped[/yellow]"
        )
    if not result.errors:
        return

    table = Table(
        title="Processing Errors",
        show_lines=True,
        title_style="bold red",
    )
    table.add_column("Tracker", justify="right")
    table.add_column("Kind", style="magenta")
    table.add_column("Cause", overflow="fold")
    for error in result.errors:
        table.add_row(str(error.item_id), error.kind.value, error.cause)
    _err.print(table)


async def run_once(
    db_path: Path | None = None,
    offline: bool = False,
) -> int:
    """Run one alert cycle. Exit code 1 when any tracker failed."""
    db = TrackerDB(db_path)
    try:
        processor = build_processor(db, offline=offline)
        try:
            result = await processor.process_all()
        except RunInProgressError as exc:
            _err.print(f"[red]{exc}[/red]")
            return 1
        print_result(result)
        return 0 if result.ok else 1
    finally:
        db.close()


async def run_watch(
    interval_minutes: float,
    db_path: Path | None = None,
    offline: bool = False,
    max_runs: int | None = None,
) -> int:
    """Run alert cycles on a fixed interval until interrupted."""
    db = TrackerDB(db_path)
    try:
        processor = build_processor(db, offline=offline)
        _err.print(
            f"[bold]Watching trackers every {interval_minutes:g} "
            "minutes[/bold] [dim](Ctrl+C to stop)[/dim]"
        )
        await run_periodically(
            processor,
            interval_seconds=interval_minutes * 60,
            max_runs=max_runs,
            on_result=print_result,
        )
        return 0
    except asyncio.CancelledError:
        _err.print("[yellow]Stopped.[/yellow]")
        return 0
    finally:
        db.close()


def _parse_decimal(raw: str | None, label: str) -> Decimal | None:
    if raw is None:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        _err.print(f"[red]Invalid {label}: {raw}[/red]")
        raise SystemExit(1) from None


def run_track(
    product: str,
    recipient: str,
    target: str | None,
    percent: str | None,
    cooldown_hours: int | None,
    db_path: Path | None = None,
) -> int:
    """Create a tracker for an ASIN or Amazon URL."""
    asin = extract_asin(product)
    if asin is None:
        _err.print(f"[red]No ASIN found in: {product}[/red]")
        return 1
    if (target is None) == (percent is None):
        _err.print("[red]Give exactly one of --target or --percent.[/red]")
        return 1

    mode = (
        AlertMode.FIXED_PRICE if target is not None
        else AlertMode.PERCENTAGE_DROP
    )
    db = TrackerDB(db_path)
    try:
        item = db.add_tracker(
            recipient=recipient,
            identifier=asin,
            alert_mode=mode,
            target_price=_parse_decimal(target, "target price"),
            percentage_threshold=_parse_decimal(percent, "percentage"),
            cooldown_hours=cooldown_hours,
        )
    except ValueError as exc:
        _err.print(f"[red]{exc}[/red]")
        return 1
    finally:
        db.close()

    _err.print(
        f"[green]✓ Tracker {item.id}: {recipient} watching {asin}[/green]"
    )
    return 0


def run_untrack(item_id: int, db_path: Path | None = None) -> int:
    """Delete a tracker."""
    db = TrackerDB(db_path)
    try:
        removed = db.remove_tracker(item_id)
    finally:
        db.close()
    if not removed:
        _err.print(f"[yellow]No tracker with id {item_id}.[/yellow]")
        return 1
    _err.print(f"[green]✓ Tracker {item_id} removed[/green]")
    return 0


def run_list(db_path: Path | None = None) -> int:
    """Print every tracker with its latest known price."""
    db = TrackerDB(db_path)
    try:
        pairs = db.list_tracked_items_with_snapshots()
    finally:
        db.close()

    if not pairs:
        _err.print("[yellow]No trackers yet.[/yellow]")
        return 0

    table = Table(
        title="Tracked Products",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", justify="right")
    table.add_column("ASIN", style="magenta")
    table.add_column("Recipient")
    table.add_column("Condition")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Last Alert", style="dim")

    for item, snapshot in pairs:
        if item.alert_mode is AlertMode.FIXED_PRICE:
            condition = f"≤ ${item.target_price:,.2f}"
        else:
            condition = f"≥ {item.percentage_threshold}% off"
        price = (
            f"${snapshot.current_price:,.2f}" if snapshot else "—"
        )
        last = (
            f"{item.last_alert_sent_at:%Y-%m-%d %H:%M} "
            f"@ ${item.last_alert_price}"
            if item.last_alert_sent_at
            else "never"
        )
        table.add_row(
            str(item.id),
            item.identifier,
            item.recipient,
            condition,
            price,
            last,
        )

    Console().print(table)
    return 0


def run_logs(limit: int = 20, db_path: Path | None = None) -> int:
    """Print the most recent delivery attempts."""
    db = TrackerDB(db_path)
    try:
        records = db.recent_deliveries(limit)
    finally:
        db.close()

    table = Table(
        title="Email Deliveries",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("When", style="dim")
    table.add_column("Tracker", justify="right")
    table.add_column("To")
    table.add_column("Status", justify="center")
    table.add_column("Provider / Message ID", overflow="fold")
    table.add_column("Error", style="red", overflow="fold")

    for r in records:
        status = (
            "[green]sent[/green]" if r.status == "sent"
            else "[red]failed[/red]"
        )
        provider = (
            f"{r.provider} {r.provider_message_id}".strip() or "—"
        )
        table.add_row(
            f"{r.created_at:%Y-%m-%d %H:%M}",
            str(r.item_id),
            r.recipient,
            status,
            provider,
            r.error or "—",
        )

    Console().print(table)
    return 0


def run_set_cooldown(hours: int, db_path: Path | None = None) -> int:
    """Set (or with 0, clear) the global cooldown override."""
    if hours < 0:
        _err.print("[red]Cooldown hours cannot be negative.[/red]")
        return 1
    db = TrackerDB(db_path)
    try:
        if hours == 0:
            db.delete_config(COOLDOWN_CONFIG_KEY)
        else:
            db.set_config(COOLDOWN_CONFIG_KEY, str(hours))
    finally:
        db.close()
    if hours == 0:
        _err.print("[green]✓ Global cooldown cleared[/green]")
    else:
        _err.print(f"[green]✓ Global cooldown set to {hours}h[/green]")
    return 0
