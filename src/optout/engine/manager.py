"""Process-wide owner of the single active opt-out run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING

from optout.engine.runner import ExecutorFactory, OptOutRun, SessionFactory
from optout.exceptions import AlreadyRunningError, InvalidRunRequestError, NoActiveRunError
from optout.models.broker import Broker
from optout.models.playbook import BEST_SELECTION
from optout.models.profile import Profile
from optout.models.run import ContinueResponse, OptOutComplete
from optout.models.states import ACTIVE_STATES, RunStatus
from optout.monitoring.event_bus import EventBus
from optout.settings.config import EngineSettings

if TYPE_CHECKING:
    from optout.engine.resolver import PlaybookResolver
    from optout.playbook.catalog import CatalogClient
    from optout.store.history import HistoryStore

logger = logging.getLogger(__name__)

BrokerDirectory = Callable[[], Iterable[Broker]]
ProfileProvider = Callable[[], Profile]


class RunManager:
    """Starts, steers and cancels opt-out runs; at most one is active at a time.

    Args:
        bus: Event bus runs publish to.
        resolver: Playbook resolver shared by all runs (and its cache).
        brokers: Returns the broker registry.
        profile_provider: Returns the profile snapshot for a new run.
        session_factory: Opens a fresh browser session per broker.
        history: Optional submission history store.
        catalog: Optional catalog client for outcome reports.
        settings: Engine tuning.
        executor_factory: Overrides step executor construction.
    """

    def __init__(
        self,
        bus: EventBus,
        resolver: PlaybookResolver,
        *,
        brokers: BrokerDirectory,
        profile_provider: ProfileProvider,
        session_factory: SessionFactory,
        history: HistoryStore | None = None,
        catalog: CatalogClient | None = None,
        settings: EngineSettings | None = None,
        executor_factory: ExecutorFactory | None = None,
    ) -> None:
        self._bus = bus
        self._resolver = resolver
        self._brokers = brokers
        self._profile_provider = profile_provider
        self._session_factory = session_factory
        self._history = history
        self._catalog = catalog
        self._settings = settings
        self._executor_factory = executor_factory
        self._lock = asyncio.Lock()
        self._run: OptOutRun | None = None

    @property
    def current_run(self) -> OptOutRun | None:
        """The most recent run, active or finished."""
        return self._run

    def status(self) -> RunStatus:
        """Status of the most recent run (``idle`` if none was started)."""
        return self._run.status if self._run else RunStatus.IDLE

    def is_active(self) -> bool:
        """Whether a run is ``running`` or ``waiting_for_user``."""
        return self._run is not None and self._run.status in ACTIVE_STATES

    async def start_run(
        self,
        broker_ids: Iterable[str],
        playbook_selections: Mapping[str, str] | None = None,
    ) -> str:
        """Start a run over *broker_ids* and return its id without waiting for it.

        When *playbook_selections* is ``None`` every broker uses the catalog's
        best playbook; otherwise every broker must have an entry.

        Raises:
            AlreadyRunningError: Another run is running or waiting for the user.
            InvalidRunRequestError: No id matches a known broker, or a broker lacks a selection.
        """
        async with self._lock:
            if self._run is not None and self._run.status in ACTIVE_STATES:
                raise AlreadyRunningError(self._run.run_id)

            wanted = list(dict.fromkeys(broker_ids))
            registry = {b.id: b for b in self._brokers()}
            unknown = [bid for bid in wanted if bid not in registry]
            if unknown:
                logger.warning("Ignoring unknown broker ids: %s", ", ".join(unknown))
            selected = [registry[bid] for bid in wanted if bid in registry]
            if not selected:
                raise InvalidRunRequestError("No valid brokers selected")

            if playbook_selections is None:
                selections = {b.id: BEST_SELECTION for b in selected}
            else:
                selections = {k: v for k, v in playbook_selections.items() if v}
                missing = [b.name or b.id for b in selected if b.id not in selections]
                if missing:
                    raise InvalidRunRequestError(f"No playbook selected for: {', '.join(missing)}")

            run = OptOutRun(
                selected,
                selections,
                self._profile_provider(),
                bus=self._bus,
                resolver=self._resolver,
                session_factory=self._session_factory,
                history=self._history,
                catalog=self._catalog,
                settings=self._settings,
                executor_factory=self._executor_factory,
            )
            self._run = run
            run.start()
            logger.info("Started run %s for %d broker(s)", run.run_id, len(selected))
            return run.run_id

    async def continue_run(self, response: ContinueResponse | str | None = None) -> None:
        """Resume the run waiting for the user.

        Raises:
            NoActiveRunError: No run is waiting for the user.
            ValueError: *response* is not ``retry``, ``skip`` or ``abort``.
        """
        run = self._run
        if run is None or run.status != RunStatus.WAITING_FOR_USER:
            raise NoActiveRunError("No opt-out run is waiting for input")
        if isinstance(response, str):
            response = ContinueResponse(response)
        run.provide_response(response)

    async def cancel_run(self) -> None:
        """Cancel the active run.

        Raises:
            NoActiveRunError: No run is active.
        """
        run = self._run
        if run is None or run.status not in ACTIVE_STATES:
            raise NoActiveRunError()
        run.cancel()

    async def wait(self) -> OptOutComplete | None:
        """Wait for the most recent run to finish and return its summary."""
        if self._run is None or self._run.task is None:
            return None
        return await self._run.wait()
