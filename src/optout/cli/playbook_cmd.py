"""CLI commands for playbook management.

Subcommands for listing, inspecting, validating, submitting and deleting local
draft playbooks, and for browsing and voting on community playbooks.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from optout.exceptions import OptOutError, PlaybookValidationError

playbook_app = typer.Typer(help="Manage playbooks: list, show, validate, submit and delete local drafts.")
console = Console()


def _store(path: Optional[Path] = None):
    from optout.store.local_playbooks import LocalPlaybookStore

    return LocalPlaybookStore(path)


# ---------------------------------------------------------------------------
# optout playbook list
# ---------------------------------------------------------------------------


@playbook_app.command("list")
def playbook_list(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
    community: Optional[str] = typer.Option(
        None, "--community", "-c", help="List verified catalog playbooks for this broker id instead."
    ),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the local playbook file."),
) -> None:
    """List local draft playbooks (or community playbooks for a broker)."""
    if community:
        _list_community(community, json_output)
        return

    try:
        playbooks = _store(file).get_all()
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    if not playbooks:
        console.print("No local playbooks saved.")
        return

    if json_output:
        data = [p.model_dump(mode="json", by_alias=True) for p in playbooks]
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title="Local playbooks")
    table.add_column("ID", style="cyan")
    table.add_column("Broker")
    table.add_column("Steps", justify="right")
    table.add_column("Submitted", justify="center")
    table.add_column("Title", max_width=40)
    for pb in playbooks:
        table.add_row(
            pb.id,
            pb.broker_name or pb.broker_id,
            str(len(pb.steps)),
            "[green]✓[/green]" if pb.submitted_at else "",
            (pb.title or "")[:40],
        )

    console.print(table)
    console.print(f"\n[bold]{len(playbooks)}[/bold] playbook(s)")


def _list_community(broker_id: str, json_output: bool) -> None:
    from optout.playbook.catalog import CatalogClient

    async def _fetch():
        async with CatalogClient() as client:
            return await client.fetch_playbooks(broker_id)

    try:
        summaries = asyncio.run(_fetch())
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    if json_output:
        console.print_json(json.dumps([s.model_dump(mode="json") for s in summaries], indent=2))
        return

    if not summaries:
        console.print(f"No verified community playbooks for {broker_id}.")
        return

    table = Table(title=f"Community playbooks for {broker_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("✓/✗", justify="right")
    table.add_column("Title", max_width=40)
    for s in summaries:
        table.add_row(s.id, str(s.version), str(s.score), f"{s.success_count}/{s.failure_count}", s.title or "")
    console.print(table)


# ---------------------------------------------------------------------------
# optout playbook show <id>
# ---------------------------------------------------------------------------


@playbook_app.command("show")
def playbook_show(
    playbook_id: str = typer.Argument(..., help="Local playbook id to display."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the local playbook file."),
) -> None:
    """Display a local playbook and its steps."""
    store = _store(file)
    match = store.get(playbook_id)

    if not match:
        console.print(f"[red]Playbook not found:[/red] {playbook_id}")
        available = [pb.id for pb in store.get_all()]
        if available:
            console.print(f"  Available: {', '.join(available)}")
        raise typer.Exit(code=1)

    if json_output:
        console.print_json(match.model_dump_json(indent=2, by_alias=True))
        return

    console.print(f"[bold cyan]{match.id}[/bold cyan]  {match.title or ''}")
    console.print(f"  Broker:  {match.broker_name or match.broker_id}")
    console.print(f"  Updated: {match.updated_at}")
    if match.notes:
        console.print(f"  Notes:   {match.notes}")

    table = Table(title="Steps")
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Selector / value", max_width=50)
    table.add_column("Description", max_width=50)
    for step in sorted(match.steps, key=lambda s: s.position):
        target = step.selector or step.value or (step.profile_key.value if step.profile_key else "")
        flag = " [dim](optional)[/dim]" if step.optional else ""
        table.add_row(str(step.position), step.action.value + flag, target, step.description)
    console.print(table)


# ---------------------------------------------------------------------------
# optout playbook validate <file>
# ---------------------------------------------------------------------------


@playbook_app.command("validate")
def playbook_validate(
    path: Path = typer.Argument(..., help="JSON file: a list of steps or an object with a 'steps' list."),
) -> None:
    """Validate a playbook file without saving it."""
    from optout.playbook.validation import validate_payload

    if not path.exists():
        console.print(f"[red]File not found:[/red] {path}")
        raise typer.Exit(code=1)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]✗[/red] Invalid JSON: {e}")
        raise typer.Exit(code=1)

    raw_steps = data.get("steps", []) if isinstance(data, dict) else data
    if not isinstance(raw_steps, list) or not all(isinstance(s, dict) for s in raw_steps):
        console.print("[red]✗[/red] Expected a list of step objects.")
        raise typer.Exit(code=1)

    try:
        steps = validate_payload(raw_steps)
    except PlaybookValidationError as e:
        console.print(f"[red]✗[/red] {len(e.problems)} problem(s):")
        for problem in e.problems:
            console.print(f"  • {problem}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Valid playbook ({len(steps)} steps)")


# ---------------------------------------------------------------------------
# optout playbook delete <id>
# ---------------------------------------------------------------------------


@playbook_app.command("delete")
def playbook_delete(
    playbook_id: str = typer.Argument(..., help="Local playbook id to delete."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the local playbook file."),
) -> None:
    """Delete a local draft playbook."""
    if not _store(file).delete(playbook_id):
        console.print(f"[red]Playbook not found:[/red] {playbook_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Deleted {playbook_id}")


# ---------------------------------------------------------------------------
# optout playbook submit <id> / optout playbook vote <id> up|down
# ---------------------------------------------------------------------------


@playbook_app.command("submit")
def playbook_submit(
    playbook_id: str = typer.Argument(..., help="Local playbook id to submit for review."),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Override the local playbook file."),
) -> None:
    """Submit a local draft to the community catalog for review."""
    from datetime import datetime, timezone

    from optout.models.playbook import PlaybookSubmission
    from optout.playbook.catalog import CatalogClient
    from optout.playbook.validation import validate_steps

    store = _store(file)
    local = store.get(playbook_id)
    if local is None:
        console.print(f"[red]Playbook not found:[/red] {playbook_id}")
        raise typer.Exit(code=1)

    submission = PlaybookSubmission(
        broker_id=local.broker_id,
        broker_name=local.broker_name,
        title=local.title,
        notes=local.notes,
        steps=local.steps,
    )

    async def _submit():
        async with CatalogClient() as client:
            return await client.submit_playbook(submission)

    try:
        validate_steps(local.steps)
        result = asyncio.run(_submit())
    except PlaybookValidationError as e:
        console.print("[red]✗[/red] Playbook failed validation and was not submitted:")
        for problem in e.problems:
            console.print(f"  • {problem}")
        raise typer.Exit(code=1)
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    store.upsert(local.model_copy(update={"submitted_at": datetime.now(timezone.utc).isoformat()}))
    console.print(f"[green]✓[/green] Submitted as [cyan]{result.id}[/cyan] (status: {result.status})")
    if result.message:
        console.print(f"  {result.message}")


@playbook_app.command("vote")
def playbook_vote(
    playbook_id: str = typer.Argument(..., help="Community playbook id."),
    direction: str = typer.Argument(..., help="'up' or 'down'."),
) -> None:
    """Vote on a community playbook."""
    from optout.playbook.catalog import CatalogClient

    if direction not in ("up", "down"):
        raise typer.BadParameter("expected 'up' or 'down'", param_hint="DIRECTION")

    async def _vote() -> None:
        async with CatalogClient() as client:
            await client.vote(playbook_id, direction)

    try:
        asyncio.run(_vote())
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Voted {direction} on {playbook_id}")
