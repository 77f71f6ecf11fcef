"""One opt-out run: the per-broker, per-step state machine.

An ``OptOutRun`` walks its broker worklist on a single asyncio task:

1. Resolve the broker's playbook (local draft, catalog, or cache).
2. Open a fresh browser session and load the broker's opt-out page.
3. Execute steps in ``position`` order, suspending in ``waiting_for_user``
   whenever a step needs a human or fails.
4. Record the broker outcome, then move on.

Commands arrive from other tasks by message passing: ``provide_response``
puts onto a queue and ``cancel`` sets an event; neither blocks. Every
in-flight driver call, sleep and user wait runs as a child task that the
cancel event interrupts.

Progress is only ever emitted from the run task, so sinks see events in
order. Once cancelled, a run emits no further progress; the completion
summary is still emitted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, TypeVar

from optout.engine.executor import StepExecutor
from optout.exceptions import (
    BrowserActionError,
    BrowserUnavailable,
    CatalogError,
    OptOutError,
    PlaybookNotFoundError,
    PlaybookSignatureError,
    PlaybookValidationError,
    StoreError,
)
from optout.models.broker import Broker, SubmissionRecord
from optout.models.playbook import ActionKind, Playbook, PlaybookReport
from optout.models.profile import Profile
from optout.models.run import (
    ActionRequired,
    BrokerOutcome,
    ContinueResponse,
    OptOutComplete,
    OptOutProgress,
    OutcomeKind,
)
from optout.models.states import RunStatus, can_transition
from optout.monitoring.event_bus import EventBus, EventType
from optout.playbook.catalog import device_id
from optout.settings.config import EngineSettings

if TYPE_CHECKING:
    from optout.browser.session import BrowserSession
    from optout.engine.resolver import PlaybookResolver
    from optout.playbook.catalog import CatalogClient
    from optout.store.history import HistoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AbstractAsyncContextManager["BrowserSession"]]
ExecutorFactory = Callable[["BrowserSession", Profile], StepExecutor]

CANCELLED_MESSAGE = "Run cancelled"
ABORTED_MESSAGE = "Aborted by user"


class _RunCancelled(Exception):
    """Raised inside the run task once the cancel event is observed."""


def new_run_id() -> str:
    """Return a fresh run identifier."""
    return uuid.uuid4().hex[:12]


class OptOutRun:
    """State and worker task for one run over a broker worklist.

    Args:
        brokers: Brokers to process, in order.
        selections: Playbook selection per broker id.
        profile: Frozen profile snapshot.
        bus: Event bus progress and completion are emitted on.
        resolver: Playbook resolver.
        session_factory: Returns an async context manager yielding a fresh session.
        history: Optional submission history store.
        catalog: Optional catalog client for outcome reports.
        settings: Engine tuning.
        executor_factory: Builds the step executor for a session.
        run_id: Explicit id (generated when omitted).
    """

    def __init__(
        self,
        brokers: list[Broker],
        selections: dict[str, str],
        profile: Profile,
        *,
        bus: EventBus,
        resolver: PlaybookResolver,
        session_factory: SessionFactory,
        history: HistoryStore | None = None,
        catalog: CatalogClient | None = None,
        settings: EngineSettings | None = None,
        executor_factory: ExecutorFactory | None = None,
        run_id: str | None = None,
    ) -> None:
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings().engine

        self.run_id = run_id or new_run_id()
        self.status = RunStatus.IDLE
        self.outcomes: list[BrokerOutcome] = []
        self.pending_action: ActionRequired | None = None

        self._brokers = list(brokers)
        self._selections = dict(selections)
        self._profile = profile
        self._bus = bus
        self._resolver = resolver
        self._session_factory = session_factory
        self._history = history
        self._catalog = catalog
        self._settings = settings
        self._executor_factory = executor_factory or (lambda s, p: StepExecutor(s, p, settings))

        self._responses: asyncio.Queue[ContinueResponse | None] = asyncio.Queue()
        self._cancel_event = asyncio.Event()
        self._task: asyncio.Task[OptOutComplete] | None = None
        self._reports: set[asyncio.Task[None]] = set()
        self._current: Broker | None = None

    # ------------------------------------------------------------------
    # Commands (called from other tasks; never block)
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task[OptOutComplete]:
        """Move to ``running`` and spawn the worker task."""
        self._set_status(RunStatus.RUNNING)
        self._task = asyncio.create_task(self._execute(), name=f"optout-run-{self.run_id}")
        return self._task

    def provide_response(self, response: ContinueResponse | None = None) -> None:
        """Deliver the user's answer to the current suspension."""
        self._responses.put_nowait(response)

    def cancel(self) -> None:
        """Fail the run now and interrupt whatever the worker is awaiting."""
        if self.status in (RunStatus.COMPLETED, RunStatus.FAILED):
            return
        logger.info("Cancelling run %s", self.run_id)
        self._cancel_event.set()
        self.status = RunStatus.FAILED
        self.pending_action = None

    @property
    def cancelled(self) -> bool:
        """Whether :meth:`cancel` has been called."""
        return self._cancel_event.is_set()

    @property
    def task(self) -> asyncio.Task[OptOutComplete] | None:
        """The worker task, once started."""
        return self._task

    async def wait(self) -> OptOutComplete:
        """Wait for the worker task and return the completion summary."""
        if self._task is None:
            raise RuntimeError("Run has not been started")
        return await self._task

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _execute(self) -> OptOutComplete:
        total = len(self._brokers)
        await self._bus.emit(
            EventType.RUN_STARTED,
            {"brokers_total": total, "broker_ids": [b.id for b in self._brokers]},
            run_id=self.run_id,
        )
        remaining_reason = CANCELLED_MESSAGE

        try:
            for index, broker in enumerate(self._brokers):
                self._check_cancelled()
                self._current = broker
                outcome = await self._run_broker(index, broker)
                self._record(broker, outcome)
        except _RunCancelled:
            logger.info("Run %s cancelled after %d/%d brokers", self.run_id, len(self.outcomes), total)
            self._fail_current(CANCELLED_MESSAGE)
        except BrowserUnavailable as exc:
            logger.error("Run %s: browser unavailable: %s", self.run_id, exc.reason)
            remaining_reason = exc.reason
            self._set_status(RunStatus.FAILED)
            if self._current is not None:
                await self._progress(self._current, len(self.outcomes), "Failed to launch Chrome", error=exc.reason)
            self._fail_current(exc.reason)
        except Exception:
            logger.exception("Run %s failed unexpectedly", self.run_id)
            remaining_reason = "Internal error"
            self._set_status(RunStatus.FAILED)
            await self._bus.emit(
                EventType.ERROR, {"message": "Internal run error. Check logs for details."}, run_id=self.run_id
            )
            self._fail_current(remaining_reason)

        for broker in self._brokers[len(self.outcomes):]:
            self.outcomes.append(
                BrokerOutcome(broker_id=broker.id, broker_name=broker.name, success=False, error=remaining_reason)
            )

        if self.status == RunStatus.RUNNING:
            self._set_status(RunStatus.COMPLETED)

        succeeded = sum(1 for o in self.outcomes if o.success)
        summary = OptOutComplete(
            run_id=self.run_id,
            total=total,
            succeeded=succeeded,
            failed=total - succeeded,
            cancelled=self.cancelled,
            outcomes=list(self.outcomes),
        )
        logger.info("Run %s %s: %d succeeded, %d failed", self.run_id, self.status.value, succeeded, total - succeeded)
        await self._bus.emit_complete(summary)
        return summary

    async def _run_broker(self, index: int, broker: Broker) -> BrokerOutcome:
        """Resolve, open a session and execute one broker's playbook."""
        selection = self._selections.get(broker.id, "")
        try:
            playbook = await self._interruptible(self._resolver.resolve(broker, selection))
        except PlaybookNotFoundError:
            return await self._resolution_failed(index, broker, "No playbook available for this broker")
        except (PlaybookSignatureError, PlaybookValidationError, CatalogError) as exc:
            return await self._resolution_failed(index, broker, f"Playbook rejected: {exc}")
        except BrowserUnavailable:
            raise
        except OptOutError as exc:
            logger.warning("Run %s: could not load playbook for %s: %s", self.run_id, broker.id, exc)
            return await self._resolution_failed(index, broker, f"Could not load playbook: {exc}")

        await self._progress(broker, index, f"Using {playbook.describe_source()}...")

        async with self._session_factory() as session:
            self._check_cancelled()
            if broker.opt_out_url:
                await self._progress(broker, index, "Navigating to opt-out page...")
                try:
                    await self._interruptible(session.navigate(broker.opt_out_url))
                except BrowserActionError as exc:
                    error = f"Failed to open page: {exc}"
                    await self._progress(broker, index + 1, error, error=error)
                    outcome = BrokerOutcome(broker_id=broker.id, broker_name=broker.name, success=False, error=error)
                    self._write_history(broker, outcome)
                    return outcome

            outcome = await self._run_steps(index, broker, playbook, session)

        if not playbook.is_local:
            self._report(playbook, outcome)
        self._write_history(broker, outcome)
        if outcome.success:
            await self._progress(broker, index + 1, "Opt-out submitted")
        else:
            await self._progress(broker, index + 1, f"Opt-out failed: {outcome.error}", error=outcome.error)
        return outcome

    async def _run_steps(
        self,
        index: int,
        broker: Broker,
        playbook: Playbook,
        session: BrowserSession,
    ) -> BrokerOutcome:
        """Execute *playbook* step by step, handling suspensions."""
        executor = self._executor_factory(session, self._profile)
        steps = playbook.ordered_steps()
        last_step = ""
        cursor = 0

        while cursor < len(steps):
            self._check_cancelled()
            step = steps[cursor]
            last_step = step.description or step.label()
            await self._progress(broker, index, last_step)

            outcome = await self._interruptible(executor.execute(step))

            if outcome.kind == OutcomeKind.SUCCESS:
                if outcome.terminal:
                    break
                if step.action != ActionKind.WAIT and step.wait_after_ms:
                    await self._sleep_ms(min(step.wait_after_ms, self._settings.max_wait_ms))
                cursor += 1
                continue

            if outcome.kind == OutcomeKind.NEEDS_HUMAN_ACTION and outcome.action_required is not None:
                response = await self._wait_for_user(broker, index, outcome.action_required)
                if outcome.highlighted_selector:
                    await self._clear_highlight(session, outcome.highlighted_selector)
                if response == ContinueResponse.ABORT:
                    return self._broker_failed(broker, last_step, step.position, ABORTED_MESSAGE)
                await self._sleep_ms(self._settings.post_resume_delay_ms)
                cursor += 1
                continue

            error = outcome.error or "Step failed"
            captcha_type = await self._captcha_on_page(session)
            request = ActionRequired.step_failed(step.position, step.description, error, captcha_type)
            response = await self._wait_for_user(broker, index, request, error=error)
            if response == ContinueResponse.ABORT:
                return self._broker_failed(broker, last_step, step.position, error)
            if response == ContinueResponse.SKIP:
                logger.info("Run %s: skipping failed step %s", self.run_id, step.label())
                cursor += 1
            else:
                logger.info("Run %s: retrying step %s", self.run_id, step.label())

        return BrokerOutcome(broker_id=broker.id, broker_name=broker.name, success=True, last_step=last_step)

    # ------------------------------------------------------------------
    # Suspension
    # ------------------------------------------------------------------

    async def _wait_for_user(
        self,
        broker: Broker,
        index: int,
        request: ActionRequired,
        *,
        error: str | None = None,
    ) -> ContinueResponse | None:
        """Enter ``waiting_for_user`` and block until a response arrives."""
        # Drain any stale responses from a previous suspension
        while not self._responses.empty():
            try:
                self._responses.get_nowait()
            except asyncio.QueueEmpty:
                break

        self.pending_action = request
        self._set_status(RunStatus.WAITING_FOR_USER)
        await self._progress(broker, index, request.message, action_required=request, error=error)

        logger.info("Run %s awaiting user (%s)", self.run_id, request.type.value)
        response = await self._interruptible(self._responses.get())
        logger.info("Run %s resumed with %s", self.run_id, response.value if response else "continue")

        self.pending_action = None
        self._set_status(RunStatus.RUNNING)
        return response

    async def _interruptible(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* as a child task that cancellation interrupts.

        Raises:
            _RunCancelled: If the run is cancelled first.
        """
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not work.done():
                work.cancel()
                await asyncio.wait({work})
        if self.cancelled:
            raise _RunCancelled()
        return work.result()

    async def _sleep_ms(self, milliseconds: int) -> None:
        if milliseconds > 0:
            await self._interruptible(asyncio.sleep(milliseconds / 1000))

    def _check_cancelled(self) -> None:
        if self.cancelled:
            raise _RunCancelled()

    # ------------------------------------------------------------------
    # Session side effects
    # ------------------------------------------------------------------

    async def _clear_highlight(self, session: BrowserSession, selector: str) -> None:
        try:
            await self._interruptible(session.remove_highlight(selector))
        except BrowserActionError as exc:
            logger.debug("Could not remove highlight from %s: %s", selector, exc)

    async def _captcha_on_page(self, session: BrowserSession) -> str | None:
        try:
            detection = await self._interruptible(session.detect_captcha())
        except OptOutError as exc:
            logger.debug("CAPTCHA check failed: %s", exc)
            return None
        return detection.captcha_type.value if detection.detected else None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _resolution_failed(self, index: int, broker: Broker, error: str) -> BrokerOutcome:
        await self._progress(broker, index + 1, error, error=error)
        outcome = BrokerOutcome(broker_id=broker.id, broker_name=broker.name, success=False, error=error)
        self._write_history(broker, outcome)
        return outcome

    def _broker_failed(self, broker: Broker, last_step: str, position: int, error: str) -> BrokerOutcome:
        return BrokerOutcome(
            broker_id=broker.id,
            broker_name=broker.name,
            success=False,
            last_step=last_step,
            failure_position=position,
            error=error,
        )

    def _record(self, broker: Broker, outcome: BrokerOutcome) -> None:
        self.outcomes.append(outcome)
        self._current = None
        logger.info(
            "Run %s: broker %s %s",
            self.run_id,
            broker.id,
            "succeeded" if outcome.success else f"failed ({outcome.error})",
        )

    def _fail_current(self, reason: str) -> None:
        """Record the in-progress broker (if any) as failed."""
        broker = self._current
        if broker is None:
            return
        outcome = BrokerOutcome(broker_id=broker.id, broker_name=broker.name, success=False, error=reason)
        self.outcomes.append(outcome)
        self._current = None
        self._write_history(broker, outcome)

    def _write_history(self, broker: Broker, outcome: BrokerOutcome) -> None:
        if self._history is None:
            return
        record = (
            SubmissionRecord.success(broker, self.run_id)
            if outcome.success
            else SubmissionRecord.failure(broker.id, self.run_id, outcome.error or "Playbook execution failed")
        )
        try:
            self._history.upsert(record)
        except StoreError as exc:
            logger.warning("Could not record submission for %s: %s", broker.id, exc)

    def _report(self, playbook: Playbook, outcome: BrokerOutcome) -> None:
        """Send an anonymous outcome report without waiting for it."""
        if self._catalog is None or not self._settings.report_outcomes:
            return
        report = PlaybookReport(
            device_id=device_id(),
            outcome="success" if outcome.success else "failure",
            failure_step=outcome.failure_position,
            error_message=outcome.error,
            app_version=self._settings.app_version,
        )
        task = asyncio.create_task(self._send_report(playbook.id, report))
        self._reports.add(task)
        task.add_done_callback(self._reports.discard)

    async def _send_report(self, playbook_id: str, report: PlaybookReport) -> None:
        try:
            await self._catalog.report_outcome(playbook_id, report)  # type: ignore[union-attr]
        except CatalogError as exc:
            logger.warning("Outcome report for playbook %s failed: %s", playbook_id, exc)

    # ------------------------------------------------------------------
    # State and events
    # ------------------------------------------------------------------

    def _set_status(self, target: RunStatus) -> None:
        if self.cancelled or self.status == target:
            return
        if not can_transition(self.status, target):
            raise RuntimeError(f"Illegal run transition {self.status.value} -> {target.value}")
        logger.debug("Run %s: %s -> %s", self.run_id, self.status.value, target.value)
        self.status = target

    async def _progress(
        self,
        broker: Broker,
        completed: int,
        step: str,
        *,
        action_required: ActionRequired | None = None,
        error: str | None = None,
    ) -> None:
        if self.cancelled:
            return
        await self._bus.emit_progress(
            OptOutProgress(
                run_id=self.run_id,
                broker_id=broker.id,
                broker_name=broker.name,
                status=self.status,
                current_step=step,
                brokers_completed=completed,
                brokers_total=len(self._brokers),
                action_required=action_required,
                error=error,
            )
        )
