"""Unified CLI entry point for optout.

Config precedence: settings.default.toml -> settings.local.toml -> env vars (OPTOUT_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import logging

import typer

from optout.cli.history_cmd import history_app
from optout.cli.playbook_cmd import playbook_app
from optout.cli.run_cmd import chrome, record, run, serve
from optout.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("optout")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "optout: data broker opt-out automation. "
    "Replays step playbooks in a visible Chrome window and hands control back to you for CAPTCHAs "
    "and manual steps. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (OPTOUT_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.command("run")(run)
app.command("record")(record)
app.command("chrome")(chrome)
app.command("serve")(serve)
app.add_typer(playbook_app, name="playbook")
app.add_typer(history_app, name="history")
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine activity to stderr."),
) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"optout {VERSION}")
        raise typer.Exit()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
