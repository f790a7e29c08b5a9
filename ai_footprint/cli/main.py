"""
CLI interface for AI Footprint.

Provides command-line access to the daily ledger: viewing, resetting,
recording turns, ingesting page snapshots and serving JSON commands.
"""

import json
import sqlite3
import sys
import threading
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from ai_footprint.config.loader import TrackerConfig, ViewerConfig, load_tracker_config
from ai_footprint.config.logging import setup_logging
from ai_footprint.core.impact import (
    ImpactLevel,
    comparisons,
    efficiency_tips,
    format_number,
    goal_progress,
    impact_level,
    to_impact,
)
from ai_footprint.core.ledger import DailyLedger, InvalidInputError, LedgerService, Role
from ai_footprint.core.token_counter import EstimationMode, estimate
from ai_footprint.ingestion.events import PREVIEW_LENGTH, TrackTokensPayload
from ai_footprint.ingestion.providers import get_adapter, supported_hosts
from ai_footprint.ingestion.session import ObservationSession
from ai_footprint.service.commands import CommandHandler
from ai_footprint.service.host import LedgerHost, LedgerOwnedError
from ai_footprint.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# How long a failed refresh notice stays on the dashboard
NOTICE_SECONDS = 3.0

_LEVEL_STYLES = {
    ImpactLevel.LOW: "green",
    ImpactLevel.MEDIUM: "yellow",
    ImpactLevel.HIGH: "red",
}


@dataclass
class _Settings:
    config: TrackerConfig
    db_path: str


def _settings(ctx: typer.Context) -> _Settings:
    return ctx.obj


def _open_handler(settings: _Settings) -> CommandHandler:
    """Build the ledger service owned by this CLI invocation.

    Only valid while no ledger host owns the store; check _host_owner first.
    """
    initialize_schema(settings.db_path)
    service = LedgerService(get_repository(settings.db_path))
    service.load()
    return CommandHandler(service)


def _host_owner(settings: _Settings) -> Optional[int]:
    """Pid of a running serve host; its mutations go through the holding area."""
    initialize_schema(settings.db_path)
    return get_repository(settings.db_path).host_owner()


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Override the ledger database path"
    )
):
    """AI Footprint CLI."""
    try:
        tracker_config = load_tracker_config(str(config) if config else None)
    except (OSError, ValueError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")

    setup_logging(tracker_config.logging.level_number)
    ctx.obj = _Settings(
        config=tracker_config,
        db_path=db or tracker_config.storage.db_path
    )

    if ctx.invoked_subcommand is None:
        console.print("AI Footprint - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the ledger database."""
    settings = _settings(ctx)
    try:
        initialize_schema(settings.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        _fail(f"Could not initialize database: {e}")


@app.command()
def status(ctx: typer.Context):
    """Show today's footprint."""
    settings = _settings(ctx)
    try:
        initialize_schema(settings.db_path)
        ledger = _read_ledger(get_repository(settings.db_path))
    except sqlite3.Error as e:
        _fail(f"Could not open ledger: {e}")

    console.print(_render_ledger(ledger, settings.config.goals.daily_carbon_grams))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def reset(ctx: typer.Context):
    """Archive today's totals and start again from zero."""
    settings = _settings(ctx)
    try:
        owner = _host_owner(settings)
        if owner is not None:
            get_repository(settings.db_path).enqueue_pending_reset()
        else:
            handler = _open_handler(settings)
    except sqlite3.Error as e:
        _fail(f"Could not open ledger: {e}")

    if owner is not None:
        console.print(f"[green]✓[/] Queued reset for the ledger host (pid {owner})")
        sys.exit(EXIT_CODE_PASS)

    result = handler.handle({"action": "resetData"})
    if not result.success:
        _fail(result.error)

    console.print("[green]✓[/] Today's data has been reset")
    sys.exit(EXIT_CODE_PASS)


@app.command("estimate")
def estimate_command(
    text: str = typer.Argument(..., help="Text to estimate"),
    quick: bool = typer.Option(
        False,
        "--quick",
        "-q",
        help="Word-count estimate used for unsent drafts"
    )
):
    """Estimate tokens and impact for a piece of text."""
    mode = EstimationMode.QUICK if quick else EstimationMode.PRECISE
    tokens = estimate(text, mode)
    impact = to_impact(tokens)

    console.print(f"[bold]Tokens ({mode.value}):[/bold] {tokens}")
    console.print(f"Energy: {format_number(impact.energy_wh, 3)} Wh")
    console.print(f"Carbon: {format_number(impact.carbon_grams)} g CO2")
    console.print(f"Water: {format_number(impact.water_ml)} mL")


@app.command()
def track(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Text of the turn"),
    role: str = typer.Option(
        "user",
        "--role",
        "-r",
        help="Who wrote the turn: user or assistant"
    ),
    provider: str = typer.Option(
        "Manual",
        "--provider",
        "-p",
        help="Provider label for display"
    )
):
    """Estimate a turn and add it to today's ledger."""
    settings = _settings(ctx)
    try:
        payload = TrackTokensPayload(
            tokens=estimate(text),
            provider=provider,
            role=Role.parse(role),
            message_preview=text[:PREVIEW_LENGTH]
        )
    except InvalidInputError as e:
        _fail(str(e))

    try:
        owner = _host_owner(settings)
        if owner is not None:
            get_repository(settings.db_path).enqueue_pending_turn(payload)
        else:
            handler = _open_handler(settings)
    except sqlite3.Error as e:
        _fail(f"Could not open ledger: {e}")

    if owner is not None:
        console.print(
            f"[green]✓[/] Queued {payload.tokens} {payload.role.value} tokens "
            f"for the ledger host (pid {owner})"
        )
        sys.exit(EXIT_CODE_PASS)

    result = handler.handle({"action": "trackTokens", "data": payload.to_dict()})
    if not result.success:
        _fail(result.error)

    console.print(
        f"[green]✓[/] Recorded {payload.tokens} {payload.role.value} tokens "
        f"({result.data['total_tokens']} today)"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ingest(
    ctx: typer.Context,
    snapshot: Path = typer.Argument(..., help="HTML snapshot of a chat page"),
    host: str = typer.Option(
        ...,
        "--host",
        "-H",
        help="Hostname the snapshot was taken from, e.g. claude.ai"
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Keep re-reading the snapshot file for new turns"
    ),
    interval: float = typer.Option(
        3.0,
        "--interval",
        "-i",
        help="Seconds between re-reads when watching"
    ),
    count: int = typer.Option(
        0,
        "--count",
        "-n",
        help="Number of reads when watching (0 = until interrupted)"
    )
):
    """Count the turns in a chat page snapshot."""
    settings = _settings(ctx)
    ingestion = settings.config.ingestion

    adapter = get_adapter(host, min_text_length=ingestion.min_text_length)
    if adapter is None:
        console.print(f"[yellow]No adapter for {host}[/], supported hosts: {', '.join(supported_hosts())}")
        sys.exit(EXIT_CODE_PASS)

    if not snapshot.exists():
        _fail(f"Snapshot file not found: {snapshot}")

    try:
        initialize_schema(settings.db_path)
    except sqlite3.Error as e:
        _fail(f"Could not open ledger: {e}")
    repository = get_repository(settings.db_path)

    failures = []

    def submit(payload: TrackTokensPayload) -> None:
        # A host may start or stop while watching, so ownership is checked per turn
        try:
            if repository.host_owner() is not None:
                repository.enqueue_pending_turn(payload)
                return
            result = _open_handler(settings).track(payload)
        except sqlite3.Error as e:
            failures.append(str(e))
            return
        if not result.success:
            failures.append(result.error)

    # A single read has nothing to wait for; only watching needs the settle delay
    session = ObservationSession(
        adapter,
        submit,
        settle_seconds=ingestion.settle_seconds if watch else 0.0
    )

    reads = 0
    try:
        while True:
            submitted = session.observe(snapshot.read_text(encoding="utf-8"))
            reads += 1
            if submitted:
                console.print(f"[green]+{submitted}[/] new {adapter.name} turns")
            if not watch or (count and reads >= count):
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        pass

    console.print(f"Counted {session.processed_count} turns from {adapter.name}")
    if failures:
        _fail(f"{len(failures)} turns could not be saved: {failures[-1]}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    ctx: typer.Context,
    limit: int = typer.Option(
        7,
        "--limit",
        "-l",
        help="Number of past days to show"
    )
):
    """Show archived days."""
    settings = _settings(ctx)
    try:
        initialize_schema(settings.db_path)
        archives = get_repository(settings.db_path).list_archives(limit)
    except sqlite3.Error as e:
        _fail(f"Could not read history: {e}")

    if not archives:
        console.print("[dim]No archived days yet.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Archived Days")
    table.add_column("Date")
    table.add_column("Queries", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Energy (Wh)", justify="right")
    table.add_column("Carbon (g)", justify="right")
    table.add_column("Water (mL)", justify="right")
    for archive in archives:
        ledger = archive.ledger
        table.add_row(
            ledger.date.isoformat(),
            str(ledger.queries),
            f"{ledger.total_tokens:,}",
            format_number(ledger.energy_wh, 3),
            format_number(ledger.carbon_grams),
            format_number(ledger.water_ml)
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Refresh interval in seconds (10-30)"
    ),
    count: int = typer.Option(
        0,
        "--count",
        "-n",
        help="Number of refreshes (0 = until interrupted)"
    )
):
    """Live dashboard that polls the ledger."""
    settings = _settings(ctx)
    try:
        viewer = ViewerConfig(poll_interval_seconds=interval) if interval is not None else settings.config.viewer
    except ValueError as e:
        _fail(str(e))

    repository = get_repository(settings.db_path)
    goal = settings.config.goals.daily_carbon_grams
    ledger = DailyLedger.zeroed(date.today())
    notice: Optional[str] = None
    notice_until = 0.0
    refreshes = 0

    try:
        with Live(_render_ledger(ledger, goal), console=console, auto_refresh=False) as live:
            while True:
                try:
                    ledger = _read_ledger(repository)
                except sqlite3.Error as e:
                    notice = f"Failed to load data: {e}"
                    notice_until = time.monotonic() + NOTICE_SECONDS

                if notice and time.monotonic() >= notice_until:
                    notice = None
                live.update(_render_ledger(ledger, goal, notice), refresh=True)

                refreshes += 1
                if count and refreshes >= count:
                    break
                time.sleep(viewer.poll_interval_seconds)
    except KeyboardInterrupt:
        pass
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    ctx: typer.Context,
    push: bool = typer.Option(
        True,
        "--push/--no-push",
        help="Write a ledgerChanged line after every saved change"
    )
):
    """Run the ledger host, reading one JSON command per stdin line.

    Each command gets one JSON result line on stdout, e.g.
    {"action": "trackTokens", "data": {"tokens": 12, "role": "user"}}.
    With --push, every saved change (including turns queued by other CLI
    invocations) is also written as {"event": "ledgerChanged", "data": {...}}.
    """
    settings = _settings(ctx)
    try:
        initialize_schema(settings.db_path)
    except sqlite3.Error as e:
        _fail(f"Could not open ledger: {e}")

    repository = get_repository(settings.db_path)
    ledger_host = LedgerHost(
        LedgerService(repository),
        repository,
        queue_size=settings.config.ingestion.queue_size
    )
    try:
        ledger_host.start()
    except (LedgerOwnedError, sqlite3.Error) as e:
        _fail(f"Could not start: {e}")

    # Change lines come from the host's worker thread, replies from this one
    output_lock = threading.Lock()

    def emit(message: dict) -> None:
        with output_lock:
            typer.echo(json.dumps(message))

    unsubscribe = None
    if push:
        unsubscribe = repository.subscribe(
            lambda ledger: emit({"event": "ledgerChanged", "data": ledger.to_dict()})
        )
    try:
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                command = json.loads(line)
            except json.JSONDecodeError as e:
                reply = {"success": False, "error": f"Invalid JSON: {e}"}
            else:
                reply = ledger_host.call(command).to_dict()
            emit(reply)
    except KeyboardInterrupt:
        pass
    finally:
        if unsubscribe is not None:
            unsubscribe()
        ledger_host.stop()
    sys.exit(EXIT_CODE_PASS)


def _read_ledger(repository) -> DailyLedger:
    """Reader-side view: a stored ledger from an earlier day shows as zero."""
    stored = repository.load_current()
    today = date.today()
    if stored is None or stored.date != today:
        return DailyLedger.zeroed(today)
    return stored


def _render_ledger(ledger: DailyLedger, daily_goal: float, notice: Optional[str] = None) -> Group:
    """Dashboard for one ledger snapshot."""
    level = impact_level(ledger.carbon_grams)
    style = _LEVEL_STYLES[level]

    metrics = Table(title=f"AI Footprint - {ledger.date.strftime('%b %d')}")
    metrics.add_column("Metric")
    metrics.add_column("Today", justify="right")
    metrics.add_row("Queries", str(ledger.queries))
    metrics.add_row("Tokens", format_number(ledger.total_tokens))
    metrics.add_row("Energy", f"{format_number(ledger.energy_wh, 3)} Wh")
    metrics.add_row("Carbon", f"{format_number(ledger.carbon_grams)} g CO2")
    metrics.add_row("Water", f"{format_number(ledger.water_ml)} mL")
    metrics.add_row("Impact level", Text(level.value.upper(), style=style))

    equivalents = comparisons(ledger)
    compare = Table(title="Equivalent to")
    compare.add_column("Comparison")
    compare.add_column("Amount", justify="right")
    compare.add_row("Miles driven", equivalents.car_miles)
    compare.add_row("Trees needed (1 year)", equivalents.trees_needed)
    compare.add_row("Phone charges", equivalents.phone_charges)
    compare.add_row("Light bulb hours", equivalents.light_bulb_hours)
    compare.add_row("Cups of coffee (water)", equivalents.coffee_cups)

    progress = goal_progress(ledger.carbon_grams, daily_goal)
    progress_style = "red" if progress.exceeded else "green"
    goal_line = Text(
        f"Daily goal: {progress.percentage:.1f}% of {daily_goal:g} g used, "
        f"{progress.remaining:.1f} g remaining",
        style=progress_style
    )

    parts = [metrics, compare, goal_line]
    for tip in efficiency_tips(ledger):
        parts.append(Text(f"Tip: {tip}", style="cyan"))
    if notice:
        parts.append(Text(notice, style="bold red"))
    return Group(*parts)


if __name__ == "__main__":
    app()
