"""Step executor: interpret one playbook step against a live browser session.

``StepExecutor.execute`` never raises for driver failures: every
``OptOutError`` raised while handling a step becomes a ``failure`` outcome,
and human-gated steps become ``needs_human_action`` outcomes. Other
exceptions are programming errors and propagate.

Profile values are resolved by ``profile_key`` at the last moment and
passed straight to the driver. Logs and outcomes name the key, never the
value.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from optout.exceptions import OptOutError
from optout.models.playbook import ActionKind, PlaybookStep
from optout.models.profile import Profile
from optout.models.run import ActionRequired, OutcomeKind, StepOutcome
from optout.settings.config import EngineSettings

if TYPE_CHECKING:
    from optout.browser.session import BrowserSession

logger = logging.getLogger(__name__)

DEFAULT_CAPTCHA_MESSAGE = "Please solve the CAPTCHA in the browser."
DEFAULT_PROMPT_MESSAGE = "Please complete this step in the browser."
MANUAL_FILL_MESSAGE = "Please fill out this field in the browser: {}"

Handler = Callable[[PlaybookStep], Awaitable[StepOutcome]]


class StepExecutor:
    """Executes single ``PlaybookStep``s against one browser session.

    Args:
        session: The live browser session for the current broker.
        profile: Frozen profile snapshot used to resolve ``profile_key``.
        settings: Engine tuning (timeouts, human-like delay).
    """

    def __init__(
        self,
        session: BrowserSession,
        profile: Profile,
        settings: EngineSettings | None = None,
    ) -> None:
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings().engine

        self._session = session
        self._profile = profile
        self._settings = settings
        self._handlers: dict[ActionKind, Handler] = {
            ActionKind.NAVIGATE: self._navigate,
            ActionKind.FILL: self._fill,
            ActionKind.SELECT: self._select,
            ActionKind.CHECK: self._check,
            ActionKind.CLICK: self._click,
            ActionKind.WAIT: self._wait,
            ActionKind.WAIT_FOR: self._wait_for,
            ActionKind.SCROLL_TO: self._scroll_to,
            ActionKind.FIND_AND_CLICK: self._find_and_click,
            ActionKind.CAPTCHA: self._captcha,
            ActionKind.USER_PROMPT: self._user_prompt,
            ActionKind.DONE: self._done,
        }

    async def execute(self, step: PlaybookStep) -> StepOutcome:
        """Execute *step* and return its outcome.

        Failures of ``optional`` steps are downgraded to success with the
        reason kept in ``note``.
        """
        handler = self._handlers.get(step.action)
        if handler is None:
            return StepOutcome.failure(step.position, f"Unsupported action: {step.action}")

        logger.debug("Executing step %s (selector=%s, profile_key=%s)", step.label(), step.selector, _key(step))
        try:
            outcome = await handler(step)
        except OptOutError as exc:
            outcome = StepOutcome.failure(step.position, str(exc))

        if outcome.kind == OutcomeKind.FAILURE and step.optional:
            logger.info("Optional step %s failed, continuing: %s", step.label(), outcome.error)
            return StepOutcome.success(step.position, note=outcome.error)
        if outcome.kind == OutcomeKind.FAILURE:
            logger.warning("Step %s failed: %s", step.label(), outcome.error)
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _human_delay(self) -> None:
        """Sleep a random human-like interval before touching the DOM."""
        low = max(0, self._settings.action_delay_ms_min)
        high = max(low, self._settings.action_delay_ms_max)
        if high <= 0:
            return
        await asyncio.sleep(random.randint(low, high) / 1000)

    def _input_value(self, step: PlaybookStep) -> str | None:
        """Resolve the literal a step should enter: profile value, else ``value``.

        Raises:
            OptOutError: If the step names a profile key the profile leaves empty.
        """
        if step.profile_key is not None:
            resolved = self._profile.resolve(step.profile_key)
            if resolved is None:
                raise OptOutError(f"Profile has no value for '{step.profile_key.value}'")
            return resolved
        return step.value

    async def _manual_field(self, step: PlaybookStep) -> StepOutcome:
        """Highlight a field the playbook cannot fill and hand it to the user."""
        selector = step.selector or ""
        await self._session.highlight(selector)
        label = step.description or selector
        return StepOutcome.needs_human(
            step.position,
            ActionRequired.manual_step(MANUAL_FILL_MESSAGE.format(label)),
            highlighted_selector=selector,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _navigate(self, step: PlaybookStep) -> StepOutcome:
        await self._session.navigate(step.value or "")
        return StepOutcome.success(step.position)

    async def _fill(self, step: PlaybookStep) -> StepOutcome:
        text = self._input_value(step)
        if text is None:
            return await self._manual_field(step)
        await self._human_delay()
        await self._session.fill(step.selector or "", text)
        return StepOutcome.success(step.position)

    async def _select(self, step: PlaybookStep) -> StepOutcome:
        choice = self._input_value(step)
        if choice is None:
            return await self._manual_field(step)
        await self._human_delay()
        await self._session.select(step.selector or "", choice)
        return StepOutcome.success(step.position)

    async def _check(self, step: PlaybookStep) -> StepOutcome:
        await self._human_delay()
        await self._session.check(step.selector or "", checked=(step.value or "").lower() != "false")
        return StepOutcome.success(step.position)

    async def _click(self, step: PlaybookStep) -> StepOutcome:
        await self._human_delay()
        await self._session.click(step.selector or "")
        return StepOutcome.success(step.position)

    async def _find_and_click(self, step: PlaybookStep) -> StepOutcome:
        text = self._input_value(step)
        await self._human_delay()
        if text:
            await self._session.click_text(step.selector or "", text)
        else:
            await self._session.click(step.selector or "")
        return StepOutcome.success(step.position)

    async def _wait(self, step: PlaybookStep) -> StepOutcome:
        await asyncio.sleep(min(step.wait_after_ms, self._settings.max_wait_ms) / 1000)
        return StepOutcome.success(step.position)

    async def _wait_for(self, step: PlaybookStep) -> StepOutcome:
        timeout = min(self._settings.wait_for_timeout_ms, self._settings.max_wait_ms)
        await self._session.wait_for(step.selector or "", timeout)
        return StepOutcome.success(step.position)

    async def _scroll_to(self, step: PlaybookStep) -> StepOutcome:
        await self._human_delay()
        await self._session.scroll_to(step.selector or "")
        return StepOutcome.success(step.position)

    async def _captcha(self, step: PlaybookStep) -> StepOutcome:
        message = step.description or DEFAULT_CAPTCHA_MESSAGE
        return StepOutcome.needs_human(step.position, ActionRequired.solve_captcha(message))

    async def _user_prompt(self, step: PlaybookStep) -> StepOutcome:
        message = step.description or DEFAULT_PROMPT_MESSAGE
        return StepOutcome.needs_human(
            step.position, ActionRequired.user_prompt(message, description=step.instructions)
        )

    async def _done(self, step: PlaybookStep) -> StepOutcome:
        return StepOutcome.success(step.position, terminal=True)


def _key(step: PlaybookStep) -> str | None:
    return step.profile_key.value if step.profile_key else None
