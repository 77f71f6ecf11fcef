"""Command facade: the operations a UI (CLI, HTTP, desktop shell) invokes.

``OptOutService`` wires the run manager, the recorder, the local stores and
the catalog client around one ``EventBus``. Every surface talks to the
engine through this class only.

Usage::

    service = OptOutService.from_settings()
    service.bus.add_sink(LoggingSink())
    run_id = await service.start_opt_out_run(["spokeo"], {"spokeo": "best"})
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from optout.browser.chrome import find_chrome_binary
from optout.browser.session import BrowserSession, open_session
from optout.engine.manager import BrokerDirectory, ProfileProvider, RunManager
from optout.engine.resolver import PlaybookResolver
from optout.engine.runner import SessionFactory
from optout.models.broker import Broker
from optout.models.recording import RecordedAction
from optout.models.run import ContinueResponse
from optout.models.states import RunStatus
from optout.monitoring.event_bus import EventBus, LoggingSink
from optout.playbook.catalog import CatalogClient
from optout.recording.recorder import ActionRecorder, SessionLauncher
from optout.settings.config import Settings
from optout.store.files import load_profile, load_registry
from optout.store.history import HistoryStore
from optout.store.local_playbooks import LocalPlaybookStore

logger = logging.getLogger(__name__)


class OptOutService:
    """Facade over the run engine and recorder.

    Args:
        settings: Root settings.
        bus: Event bus (a new one with a ``LoggingSink`` when omitted).
        brokers: Broker directory callable.
        profile_provider: Profile snapshot callable.
        local_store: Local draft store.
        history: Submission history store.
        catalog: Catalog client (``None`` disables community playbooks).
        session_factory: Per-broker session context factory for runs.
        launcher: Session launcher for the recorder.
        chrome_locator: Returns the Chrome binary path or ``None``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        bus: EventBus | None = None,
        brokers: BrokerDirectory,
        profile_provider: ProfileProvider,
        local_store: LocalPlaybookStore,
        history: HistoryStore | None = None,
        catalog: CatalogClient | None = None,
        session_factory: SessionFactory | None = None,
        launcher: SessionLauncher | None = None,
        chrome_locator: Callable[[], Path | None] | None = None,
    ) -> None:
        if bus is None:
            bus = EventBus()
            bus.add_sink(LoggingSink())

        self.settings = settings
        self.bus = bus
        self.local_store = local_store
        self.history = history
        self.catalog = catalog
        self._brokers = brokers
        self._chrome_locator = chrome_locator or (lambda: find_chrome_binary(settings.browser.chrome_binary))

        self.resolver = PlaybookResolver(local_store, catalog, settings.catalog.playbook_public_key)
        self.runs = RunManager(
            bus,
            self.resolver,
            brokers=brokers,
            profile_provider=profile_provider,
            session_factory=session_factory or (lambda: open_session(settings.browser)),
            history=history,
            catalog=catalog,
            settings=settings.engine,
        )
        self.recorder = ActionRecorder(
            launcher or (lambda: BrowserSession.launch(settings.browser)),
            settings.recorder,
            bus,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, bus: EventBus | None = None) -> "OptOutService":
        """Build a service backed by the configured JSON files and catalog."""
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings()

        storage = settings.storage
        registry_path = storage.path_for(storage.registry_file)
        profile_path = storage.path_for(storage.profile_file)
        return cls(
            settings,
            bus=bus,
            brokers=lambda: load_registry(registry_path),
            profile_provider=lambda: load_profile(profile_path),
            local_store=LocalPlaybookStore(storage.path_for(storage.local_playbooks_file)),
            history=HistoryStore(storage.path_for(storage.history_file)),
            catalog=CatalogClient(settings.catalog),
        )

    async def aclose(self) -> None:
        """Release network resources."""
        if self.catalog is not None:
            await self.catalog.close()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def start_opt_out_run(
        self,
        broker_ids: Iterable[str],
        playbook_selections: Mapping[str, str] | None = None,
    ) -> str:
        """Start a run and return its id."""
        return await self.runs.start_run(broker_ids, playbook_selections)

    async def continue_opt_out(self, response: ContinueResponse | str | None = None) -> None:
        """Resume the run waiting for the user."""
        await self.runs.continue_run(response)

    async def cancel_opt_out(self) -> None:
        """Cancel the active run."""
        await self.runs.cancel_run()

    async def get_run_status(self) -> RunStatus:
        """Return the current run status."""
        return self.runs.status()

    async def check_chrome_installed(self) -> bool:
        """Return whether a Chrome binary can be found."""
        return self._chrome_locator() is not None

    def list_brokers(self) -> list[Broker]:
        """Return the broker registry."""
        return list(self._brokers())

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self, broker_id: str, broker_name: str, url: str) -> None:
        """Start recording a new flow for *broker_id* at *url*."""
        await self.recorder.start(broker_id, broker_name, url)

    async def get_recorded_actions(self) -> list[RecordedAction]:
        """Return the actions recorded so far."""
        return self.recorder.get_actions()

    async def stop_recording(self) -> list[RecordedAction]:
        """Stop recording and return the complete log."""
        return await self.recorder.stop()

    async def mark_captcha_step(self) -> None:
        """Mark that the user solved a CAPTCHA at this point."""
        self.recorder.mark_captcha()

    async def mark_user_prompt_step(self) -> None:
        """Mark a manual step at this point."""
        self.recorder.mark_user_prompt()
