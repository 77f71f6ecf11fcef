"""Action recorder: capture a user's live walk through an opt-out flow.

The recorder drives its own browser session. A page binding delivers every
interaction to Python as it happens, and main-frame navigations are hooked
directly, so the action log is complete without polling. The log is
append-only: every snapshot is a prefix of every later snapshot, which is
what lets callers reconcile drafts incrementally (see ``converter``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from optout.exceptions import BrowserActionError, NoActiveRecordingError, RecordingActiveError
from optout.models.playbook import ActionKind
from optout.models.recording import RecordedAction
from optout.monitoring.event_bus import EventBus, EventType
from optout.recording.scripts import BINDING_NAME, CAPTURE_JS, FLUSH_JS
from optout.settings.config import RecorderSettings

if TYPE_CHECKING:
    from optout.browser.session import BrowserSession

logger = logging.getLogger(__name__)

SessionLauncher = Callable[[], Awaitable["BrowserSession"]]


def _same_url(a: str | None, b: str | None) -> bool:
    return (a or "").rstrip("/") == (b or "").rstrip("/")


class ActionRecorder:
    """Records one session at a time.

    Args:
        launcher: Returns a freshly launched session. Defaults to ``BrowserSession.launch``.
        settings: Dedupe window and text limits.
        bus: Optional event bus for recording start/stop events.
    """

    def __init__(
        self,
        launcher: SessionLauncher | None = None,
        settings: RecorderSettings | None = None,
        bus: EventBus | None = None,
    ) -> None:
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings().recorder
        if launcher is None:
            from optout.browser.session import BrowserSession

            launcher = BrowserSession.launch

        self._launcher = launcher
        self._settings = settings
        self._bus = bus
        self._lock = asyncio.Lock()
        self._session: BrowserSession | None = None
        self._recording = False
        self._actions: list[RecordedAction] = []
        self._last_url = ""
        self._last_click: tuple[str, int] | None = None
        self.broker_id = ""
        self.broker_name = ""

    @property
    def active(self) -> bool:
        """Whether a recording is in progress."""
        return self._recording

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, broker_id: str, broker_name: str, url: str) -> None:
        """Launch a session, install capture and open *url*.

        Raises:
            RecordingActiveError: A recording is already active.
            BrowserUnavailable: Chrome could not be launched.
            NavigationError / NavigationTimeout: *url* could not be loaded.
        """
        async with self._lock:
            if self._recording:
                raise RecordingActiveError()

            session = await self._launcher()
            self._actions = [RecordedAction.navigation(url)]
            self._last_url = url
            self._last_click = None
            self._recording = True
            try:
                await session.expose_binding(BINDING_NAME, self._on_binding)
                await session.add_init_script(CAPTURE_JS)
                await session.navigate(url)
            except BaseException:
                self._recording = False
                self._actions = []
                await session.close()
                raise

            self._last_url = session.current_url or url
            session.on_navigation(self._on_navigation)
            self._session = session
            self.broker_id = broker_id
            self.broker_name = broker_name

        logger.info("Recording started for broker %s", broker_id)
        if self._bus is not None:
            await self._bus.emit(EventType.RECORDING_STARTED, {"broker_id": broker_id, "broker_name": broker_name})

    def mark_captcha(self) -> None:
        """Append a CAPTCHA marker at the current point."""
        self._require_active()
        self._actions.append(RecordedAction.captcha_marker())

    def mark_user_prompt(self) -> None:
        """Append a manual-step marker at the current point."""
        self._require_active()
        self._actions.append(RecordedAction.user_prompt_marker())

    def get_actions(self) -> list[RecordedAction]:
        """Return a snapshot of the log so far.

        Raises:
            NoActiveRecordingError: Nothing is being recorded.
        """
        self._require_active()
        return list(self._actions)

    async def stop(self) -> list[RecordedAction]:
        """Capture the focused field, close the session and return the full log.

        Raises:
            NoActiveRecordingError: Nothing is being recorded.
        """
        async with self._lock:
            self._require_active()
            session = self._session
            try:
                if session is not None:
                    await session.evaluate(FLUSH_JS)
            except BrowserActionError as exc:
                logger.debug("Final field capture failed: %s", exc)
            finally:
                self._recording = False
                self._session = None
                if session is not None:
                    await session.close()
            actions = list(self._actions)

        logger.info("Recording stopped for broker %s (%d actions)", self.broker_id, len(actions))
        if self._bus is not None:
            await self._bus.emit(EventType.RECORDING_STOPPED, {"broker_id": self.broker_id, "actions": len(actions)})
        return actions

    # ------------------------------------------------------------------
    # Capture callbacks
    # ------------------------------------------------------------------

    def _on_binding(self, source: Any, payload: Any) -> None:
        """Receive one action from the capture script."""
        if not self._recording:
            return
        try:
            action = RecordedAction.model_validate(payload)
        except ValidationError as exc:
            logger.debug("Dropping malformed recorded action: %d error(s)", exc.error_count())
            return
        self.accept(action)

    def _on_navigation(self, url: str) -> None:
        if not self._recording or not url.startswith(("http://", "https://")):
            return
        if _same_url(url, self._last_url):
            return
        self._last_url = url
        self._actions.append(RecordedAction.navigation(url))

    def accept(self, action: RecordedAction) -> None:
        """Sanitize and append a captured action."""
        if action.action == ActionKind.FILL:
            action.value = None
        elif action.action == ActionKind.SELECT and action.profile_key is not None:
            action.value = None

        if action.action == ActionKind.CLICK:
            if action.element_text:
                action.element_text = action.element_text[: self._settings.element_text_max]
            selector = action.selector or ""
            last = self._last_click
            if last and last[0] == selector and action.timestamp - last[1] < self._settings.click_dedupe_ms:
                return
            self._last_click = (selector, action.timestamp)

        self._actions.append(action)

    def _require_active(self) -> None:
        if not self._recording:
            raise NoActiveRecordingError()
