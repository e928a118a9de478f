"""Sea Time Tracker CLI — automatic sea-time detection from AIS.

Commands:
  init-db        — create database tables
  run-scheduler  — poll active vessels until interrupted
  tick           — run a single scheduler tick
  check-vessel   — poll one vessel now
  pending        — list entries awaiting review
  confirm        — confirm an entry and record its accrual
  reject         — reject an entry
  summary        — sea-time totals and MCA accrual
  verify-tasks   — make sure every active vessel has a polling task
"""
from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from seatime.config import settings

app = typer.Typer(
    name="seatime",
    help="Automatic sea-time detection and MCA accrual.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(level=logging.DEBUG if verbose else settings.LOG_LEVEL)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command():
    """Create all tables (safe to re-run)."""
    from seatime.database import init_db

    with console.status("[bold]Creating database..."):
        init_db()
    console.print("[green]Database ready[/green]")


@app.command("run-scheduler")
def run_scheduler():
    """Tick every SCHEDULER_TICK_SECONDS until Ctrl+C."""
    from seatime.database import init_db
    from seatime.modules.scheduler import run_forever

    init_db()
    if not settings.MYSHIPTRACKING_API_KEY:
        console.print("[yellow]MYSHIPTRACKING_API_KEY is not set — every check will fail to authenticate[/yellow]")

    stop_event = threading.Event()

    def _stop(signum, frame):
        console.print("\n[dim]Stopping after the current tick...[/dim]")
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    console.print(
        f"Scheduler running: tick every [cyan]{settings.SCHEDULER_TICK_SECONDS}s[/cyan], "
        f"{settings.SCHEDULER_MAX_WORKERS} workers — press Ctrl+C to stop"
    )
    run_forever(stop_event)


@app.command("tick")
def tick_once():
    """Run one scheduler tick and print what happened."""
    from seatime.modules.scheduler import tick

    result = tick()
    console.print(
        f"Due: {result.due}  Claimed: {result.claimed}  "
        f"[green]Succeeded: {result.succeeded}[/green]  "
        f"{'[red]' if result.failed else '[dim]'}Failed: {result.failed}{'[/red]' if result.failed else '[/dim]'}  "
        f"Skipped: {result.skipped}"
    )
    for task_id, error in result.errors.items():
        console.print(f"  [red]task {task_id}[/red]: {error}")
    if result.failed:
        raise typer.Exit(1)


@app.command("check-vessel")
def check_vessel(vessel_id: int = typer.Argument(..., help="Vessel ID")):
    """Poll the position provider for one vessel now."""
    from seatime.database import SessionLocal
    from seatime.errors import ProviderError, SeaTimeError
    from seatime.modules.position_provider import MyShipTrackingProvider
    from seatime.modules.scheduler import run_manual_check
    from seatime.modules.sea_time_service import get_vessel

    db = SessionLocal()
    try:
        vessel = get_vessel(db, vessel_id)
        result = run_manual_check(db, vessel, MyShipTrackingProvider())
    except ProviderError as e:
        console.print(f"[red]Provider error ({e.kind}):[/red] {e}")
        raise typer.Exit(1)
    except SeaTimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    console.print(
        f"Vessel {result.vessel_id}: [bold]{result.movement.value}[/bold] → {result.effect.value}"
        + (" [yellow](stale fix)[/yellow]" if result.stale else "")
        + (f"  entry {result.entry_id}" if result.entry_id else "")
    )


@app.command("pending")
def pending(owner: Optional[str] = typer.Option(None, "--owner", help="Only this owner's vessels")):
    """List sea-time entries awaiting review."""
    from seatime.database import SessionLocal
    from seatime.modules.sea_time_service import list_pending

    db = SessionLocal()
    try:
        entries = list_pending(db, owner_id=owner)
        if not entries:
            console.print("[dim]No entries awaiting review[/dim]")
            return
        _print_entries_table(console, entries, title=f"Pending Sea Time ({len(entries)})")
    finally:
        db.close()


@app.command("confirm")
def confirm(
    entry_id: int = typer.Argument(..., help="Entry ID"),
    department: str = typer.Option(..., "--department", "-d", help="deck or engineering"),
    service_type: str = typer.Option("actual_sea_service", "--service-type", "-s"),
    watchkeeping_hours: Optional[float] = typer.Option(None, "--watchkeeping-hours"),
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Confirm an entry and record its MCA accrual."""
    from seatime.database import SessionLocal
    from seatime.modules.sea_time_service import confirm_entry

    db = SessionLocal()
    try:
        entry = confirm_entry(
            db, entry_id, department=department, service_type=service_type,
            watchkeeping_hours=watchkeeping_hours, notes=notes,
        )
    except (LookupError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    console.print(
        f"[green]Confirmed entry {entry.id}[/green]: {entry.duration_hours:.2f} h, "
        f"{entry.sea_days} sea day(s), {entry.watchkeeping_days or 0} watchkeeping day(s)"
    )
    if entry.needs_review:
        console.print("[yellow]Under 4 hours — flagged for review[/yellow]")
    if entry.requires_documentation:
        console.print(f"[yellow]Yard service beyond {settings.YARD_SERVICE_CAP_DAYS} days — documentation required[/yellow]")


@app.command("reject")
def reject(
    entry_id: int = typer.Argument(..., help="Entry ID"),
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Reject an entry."""
    from seatime.database import SessionLocal
    from seatime.modules.sea_time_service import reject_entry

    db = SessionLocal()
    try:
        reject_entry(db, entry_id, notes=notes)
    except (LookupError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()
    console.print(f"Rejected entry {entry_id}")


@app.command("summary")
def summary(
    owner: Optional[str] = typer.Option(None, "--owner"),
    start: Optional[datetime] = typer.Option(None, "--start", help="YYYY-MM-DD"),
    end: Optional[datetime] = typer.Option(None, "--end", help="YYYY-MM-DD"),
):
    """Confirmed sea-time totals and MCA accrual."""
    from seatime.database import SessionLocal
    from seatime.modules.reporting import build_summary

    db = SessionLocal()
    try:
        report = build_summary(db, owner_id=owner, start=start, end=end)
    finally:
        db.close()

    console.print(
        f"[bold]{report['total_hours']:.2f} h[/bold] ({report['total_days']:.2f} days) "
        f"across {report['entry_count']} confirmed entries"
    )

    table = Table(title="By Vessel")
    table.add_column("Vessel", style="cyan")
    table.add_column("Hours", justify="right")
    table.add_column("Days", justify="right")
    table.add_column("Entries", justify="right")
    for row in report["entries_by_vessel"]:
        table.add_row(
            row["vessel_name"] or str(row["vessel_id"]),
            f"{row['total_hours']:.2f}", f"{row['total_days']:.2f}", str(row["entry_count"]),
        )
    console.print(table)

    accrual = report["accrual"]
    console.print("\n[bold]MCA accrual[/bold]")
    console.print(f"  Actual sea days: {accrual['actual_sea_days']}")
    console.print(f"  Watchkeeping days: {accrual['watchkeeping_days']} ({accrual['watchkeeping_hours']:.2f} h)")
    console.print(
        f"  Additional watchkeeping days: {accrual['additional_watchkeeping_days']} "
        "[dim](not counted towards full certificates)[/dim]"
    )
    console.print(f"  Yard days: {accrual['yard_days']}")
    if accrual["yard_days_requiring_documentation"]:
        console.print(
            f"  [yellow]{accrual['yard_days_requiring_documentation']} yard day(s) beyond the cap "
            "need supporting documentation[/yellow]"
        )


@app.command("verify-tasks")
def verify_tasks():
    """Give every active vessel an active ais_check task."""
    from seatime.database import SessionLocal
    from seatime.modules.vessel_registry import verify_vessel_tasks

    db = SessionLocal()
    try:
        result = verify_vessel_tasks(db)
    finally:
        db.close()
    console.print(
        f"Checked {result['checked']} active vessel(s): "
        f"[green]{result['created']} created[/green], "
        f"[yellow]{result['reactivated']} reactivated[/yellow], "
        f"{result['already_active']} already active"
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_entries_table(con: Console, entries, title: str) -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Vessel")
    table.add_column("Start (UTC)")
    table.add_column("End (UTC)")
    table.add_column("Hours", justify="right")
    table.add_column("MCA")

    for e in entries:
        table.add_row(
            str(e.id),
            e.vessel.name if e.vessel is not None else str(e.vessel_id),
            e.start_time.strftime("%Y-%m-%d %H:%M"),
            e.end_time.strftime("%Y-%m-%d %H:%M") if e.end_time else "[green]at sea[/green]",
            f"{e.duration_hours:.2f}" if e.duration_hours is not None else "—",
            "—" if e.mca_compliant is None else ("[green]yes[/green]" if e.mca_compliant else "[yellow]review[/yellow]"),
        )
    con.print(table)
