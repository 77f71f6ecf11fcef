"""CLI commands that drive the browser: run, record, chrome and serve."""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from optout.exceptions import NoActiveRunError, OptOutError, PlaybookValidationError
from optout.models.run import ActionRequired, ActionRequiredType, ContinueResponse, OptOutComplete, OptOutProgress
from optout.monitoring.event_bus import Event, EventBus, EventType, JsonlSink

console = Console()

_CANCEL = "cancel"


# ---------------------------------------------------------------------------
# Console sink
# ---------------------------------------------------------------------------


class ConsoleSink:
    """Prints run progress and queues requests for human input."""

    def __init__(self) -> None:
        self.prompts: asyncio.Queue[ActionRequired] = asyncio.Queue()

    async def handle_event(self, event: Event) -> None:
        if event.event_type == EventType.PROGRESS:
            progress = OptOutProgress.model_validate(event.data)
            counter = f"[dim]{progress.brokers_completed}/{progress.brokers_total}[/dim]"
            style = "red" if progress.error else "cyan"
            console.print(f"{counter} [{style}]{progress.broker_name}[/{style}]: {progress.current_step}")
            if progress.error:
                console.print(f"    [red]{progress.error}[/red]")
            if progress.action_required is not None:
                self.prompts.put_nowait(progress.action_required)
        elif event.event_type == EventType.ERROR:
            console.print(f"[red]✗ {event.data.get('error', 'Unexpected error')}[/red]")


def parse_selections(select: list[str]) -> dict[str, str] | None:
    """Parse ``broker=selection`` pairs; ``None`` when none were given."""
    if not select:
        return None
    selections: dict[str, str] = {}
    for item in select:
        broker_id, sep, selection = item.partition("=")
        if not sep or not broker_id or not selection:
            raise typer.BadParameter(f"expected broker=selection, got {item!r}", param_hint="--select")
        selections[broker_id.strip()] = selection.strip()
    return selections


def _ask(action: ActionRequired) -> ContinueResponse | str | None:
    """Blocking prompt for one suspension (runs in a worker thread)."""
    console.print(Panel(action.message, title=action.type.value.replace("_", " "), border_style="yellow"))
    if action.description:
        console.print(f"  {action.description}")

    if action.type == ActionRequiredType.STEP_FAILED:
        choice = Prompt.ask(
            "[r]etry, [s]kip step, [a]bort broker, [c]ancel run",
            choices=["r", "s", "a", "c"],
            default="r",
            console=console,
        )
        return {"r": ContinueResponse.RETRY, "s": ContinueResponse.SKIP, "a": ContinueResponse.ABORT}.get(
            choice, _CANCEL
        )

    choice = Prompt.ask(
        "Press Enter when done, or type [a]bort broker / [c]ancel run",
        choices=["", "a", "c"],
        default="",
        show_choices=False,
        console=console,
    )
    if choice == "a":
        return ContinueResponse.ABORT
    return _CANCEL if choice == "c" else None


def build_event_bus(events: bool = False) -> tuple[ConsoleSink, EventBus]:
    """Return the console sink and a bus wired to it (plus JSONL on stderr with *events*)."""
    sink = ConsoleSink()
    bus = EventBus()
    bus.add_sink(sink)
    if events:
        bus.add_sink(JsonlSink(sys.stderr))
    return sink, bus


def _load_settings(headless: bool) -> Any:
    from optout.settings import get_settings

    settings = get_settings().model_copy(deep=True)
    if headless:
        settings.browser.headless = True
    return settings


def _print_summary(summary: OptOutComplete) -> None:
    table = Table(title=f"Run {summary.run_id}")
    table.add_column("Broker", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Last step", max_width=40)
    table.add_column("Error", max_width=50)
    for outcome in summary.outcomes:
        table.add_row(
            outcome.broker_name,
            "[green]✓[/green]" if outcome.success else "[red]✗[/red]",
            outcome.last_step,
            outcome.error or "",
        )
    console.print(table)
    verdict = "cancelled" if summary.cancelled else "complete"
    console.print(
        f"\nRun {verdict}: [green]{summary.succeeded}[/green] succeeded, "
        f"[red]{summary.failed}[/red] failed of {summary.total}"
    )


# ---------------------------------------------------------------------------
# optout run
# ---------------------------------------------------------------------------


async def _drive_run(service: Any, sink: ConsoleSink, broker_ids: list[str], selections: dict[str, str] | None):
    await service.start_opt_out_run(broker_ids, selections)
    task = service.runs.current_run.task

    while True:
        getter = asyncio.ensure_future(sink.prompts.get())
        done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
        if getter not in done:
            getter.cancel()
            break

        answer = await asyncio.to_thread(_ask, getter.result())
        try:
            if answer == _CANCEL:
                await service.cancel_opt_out()
            else:
                await service.continue_opt_out(answer)
        except NoActiveRunError:
            # The run finished or was cancelled while the prompt was open.
            pass

    return await task


def run(
    brokers: list[str] = typer.Argument(..., help="Broker ids to opt out of, in order."),
    select: list[str] = typer.Option(
        [], "--select", "-s", help="Playbook per broker: broker=best, broker=local:<id> or broker=<playbook id>."
    ),
    headless: bool = typer.Option(False, "--headless", help="Run Chrome without a window (no manual steps)."),
    events: bool = typer.Option(False, "--events", help="Also stream run events as JSONL to stderr."),
) -> None:
    """Run opt-out playbooks for one or more brokers.

    The run pauses for CAPTCHAs, manual steps and failed steps; answer the
    prompt once you have dealt with the browser window.
    """
    from optout.service import OptOutService

    selections = parse_selections(select)
    settings = _load_settings(headless)

    async def _main() -> OptOutComplete:
        sink, bus = build_event_bus(events)
        service = OptOutService.from_settings(settings, bus=bus)
        try:
            return await _drive_run(service, sink, brokers, selections)
        finally:
            await service.aclose()

    try:
        summary = asyncio.run(_main())
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    _print_summary(summary)
    if summary.failed or summary.cancelled:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# optout record
# ---------------------------------------------------------------------------


def _record_prompt() -> str:
    return Prompt.ask(
        "[c] solved a CAPTCHA, [p] manual step here, [s] stop recording",
        choices=["c", "p", "s"],
        default="s",
        console=console,
    )


def record(
    broker_id: str = typer.Argument(..., help="Broker id the playbook is for."),
    broker_name: str = typer.Argument(..., help="Display name of the broker."),
    url: str = typer.Argument(..., help="Opt-out page to start on."),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title for the saved draft."),
) -> None:
    """Record an opt-out flow in the browser and save it as a local draft playbook."""
    from optout.recording.converter import RecordingDraft
    from optout.service import OptOutService

    settings = _load_settings(headless=False)

    async def _main() -> Any:
        service = OptOutService.from_settings(settings)
        draft = RecordingDraft(broker_id, broker_name)
        try:
            await service.start_recording(broker_id, broker_name, url)
            console.print(Panel(f"Recording [bold]{broker_name}[/bold]. Walk through the opt-out in Chrome."))
            while True:
                choice = await asyncio.to_thread(_record_prompt)
                if choice == "c":
                    await service.mark_captcha_step()
                elif choice == "p":
                    await service.mark_user_prompt_step()
                else:
                    break
                draft.sync(await service.get_recorded_actions())
                console.print(f"  [dim]{len(draft.steps)} step(s) so far[/dim]")
            draft.sync(await service.stop_recording())
            return service.local_store.upsert(draft.to_local_playbook(title))
        finally:
            if service.recorder.active:
                await service.stop_recording()
            await service.aclose()

    try:
        saved = asyncio.run(_main())
    except PlaybookValidationError as e:
        console.print("[red]✗[/red] Recorded flow failed validation and was not saved:")
        for problem in e.problems:
            console.print(f"  • {problem}")
        raise typer.Exit(code=1)
    except OptOutError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Saved local playbook [cyan]{saved.id}[/cyan] ({len(saved.steps)} steps)")
    console.print(f"  Run it with: optout run {broker_id} --select {broker_id}=local:{saved.id}")


# ---------------------------------------------------------------------------
# optout chrome / optout serve
# ---------------------------------------------------------------------------


def chrome() -> None:
    """Check whether Chrome is installed."""
    from optout.browser.chrome import find_chrome_binary
    from optout.settings import get_settings

    path = find_chrome_binary(get_settings().browser.chrome_binary)
    if path is None:
        console.print("[red]✗[/red] Chrome not found. Install Google Chrome or set OPTOUT_BROWSER__CHROME_BINARY.")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Chrome found: {path}")


def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default from settings)."),
) -> None:
    """Serve the HTTP/WebSocket API."""
    import uvicorn

    from optout.settings import get_settings

    settings = get_settings()
    uvicorn.run(
        "optout.api.app:create_app",
        factory=True,
        host=host or settings.api.host,
        port=port or settings.api.port,
    )
