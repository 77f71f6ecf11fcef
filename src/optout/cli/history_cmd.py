"""CLI commands for the submission history and re-list checks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from optout.models.broker import SubmissionRecord, SubmissionStatus

history_app = typer.Typer(help="Inspect opt-out submission history.")
console = Console()

_STATUS_STYLE = {
    SubmissionStatus.SUBMITTED: "green",
    SubmissionStatus.CONFIRMED: "green",
    SubmissionStatus.PENDING_VERIFICATION: "yellow",
    SubmissionStatus.RE_LISTED: "yellow",
    SubmissionStatus.FAILED: "red",
}


def _print_records(records: list[SubmissionRecord], title: str, json_output: bool) -> None:
    if json_output:
        console.print_json(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    table = Table(title=title)
    table.add_column("Broker", style="cyan")
    table.add_column("Status")
    table.add_column("Submitted")
    table.add_column("Re-check")
    table.add_column("Error", max_width=50)
    for r in sorted(records, key=lambda rec: rec.submitted_at, reverse=True):
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            r.broker_id,
            f"[{style}]{r.status.value}[/{style}]",
            r.submitted_at.strftime("%Y-%m-%d %H:%M"),
            r.next_check_date.strftime("%Y-%m-%d") if r.next_check_date else "",
            r.error_message or "",
        )
    console.print(table)


@history_app.command("list")
def history_list(
    all_records: bool = typer.Option(False, "--all", "-a", help="Show every attempt, not just the latest per broker."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the history file."),
) -> None:
    """List submission history."""
    from optout.store.history import HistoryStore

    store = HistoryStore(file)
    records = store.get_all() if all_records else store.latest_per_broker()
    if not records:
        console.print("No submissions recorded yet.")
        return
    _print_records(records, "Submission history", json_output)


@history_app.command("due")
def history_due(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the history file."),
) -> None:
    """List brokers whose re-list check date has passed."""
    from optout.store.history import HistoryStore

    due = HistoryStore(file).due_for_recheck()
    if not due:
        console.print("[green]✓[/green] Nothing is due for a re-list check.")
        return
    _print_records(due, "Due for re-check", json_output)
    if not json_output:
        console.print(f"\nRe-run with: optout run {' '.join(r.broker_id for r in due)}")
