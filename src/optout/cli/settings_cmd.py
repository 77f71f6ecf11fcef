"""CLI commands for inspecting and validating optout settings."""

from __future__ import annotations

import json

import typer
from pydantic import ValidationError
from rich.console import Console

from optout.exceptions import OptOutError

settings_app = typer.Typer(help="Inspect and validate optout configuration.")
console = Console()

_SECRET_FIELDS = ("signing_key", "sandbox_token")


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings (secrets masked)."""
    from optout.settings import get_settings

    data = get_settings().model_dump(mode="json")
    for name in _SECRET_FIELDS:
        if data["catalog"].get(name):
            data["catalog"][name] = "***"
    console.print_json(json.dumps(data, indent=2, default=str))


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings and the configured keys, and report any issues."""
    from optout.playbook.catalog import load_signing_key
    from optout.playbook.verification import load_verify_key
    from optout.settings import get_settings

    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1)

    problems: list[str] = []
    catalog = settings.catalog
    if catalog.playbook_public_key:
        try:
            load_verify_key(catalog.playbook_public_key)
        except OptOutError as e:
            problems.append(str(e))
    if catalog.signing_key and not catalog.sandbox:
        try:
            load_signing_key(catalog.signing_key)
        except OptOutError as e:
            problems.append(str(e))

    if problems:
        for problem in problems:
            console.print(f"[red]✗[/red] {problem}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Settings are valid.")
    console.print(f"  Environment: {settings.env}")
    console.print(f"  Catalog:     {catalog.base_url}{' (sandbox)' if catalog.sandbox else ''}")
    console.print(f"  Data dir:    {settings.storage.data_dir}")
    if not catalog.playbook_public_key:
        console.print("  [yellow]⚠[/yellow] No playbook public key: community playbooks will be rejected.")
