"""Browser session driver: one Chrome instance, one page, bounded operations.

Wraps Playwright's async API behind the small set of primitives the step
executor and the recorder need. Every operation is bounded by a timeout
and maps Playwright failures onto ``optout.exceptions`` so callers never
handle Playwright types directly. Nothing here retries; retry policy
belongs to the run state machine and, ultimately, the user.

Usage::

    async with open_session() as session:
        await session.navigate("https://broker.example/optout")
        await session.fill("#email", value)
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Frame,
    Locator,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from optout.browser.captcha import CaptchaDetection, detect_captcha
from optout.browser.chrome import cleanup_stale_profile, find_chrome_binary
from optout.browser.navigation import bounded_goto
from optout.exceptions import (
    BrowserActionError,
    BrowserUnavailable,
    ElementNotFound,
    ElementNotInteractable,
    NavigationError,
    WaitTimeout,
)
from optout.settings.config import BrowserSettings

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("http://", "https://")

_HIGHLIGHT_JS = """
(sel) => {
    const el = document.querySelector(sel);
    if (!el) return false;
    el.scrollIntoView({ behavior: 'smooth', block: 'center' });
    el.style.outline = '3px solid #3b82f6';
    el.style.outlineOffset = '2px';
    el.style.transition = 'outline-color 0.5s ease-in-out';
    el.dataset.optOuttaHighlight = 'true';
    let on = true;
    window.__optOuttaHighlightInterval = setInterval(() => {
        on = !on;
        el.style.outlineColor = on ? '#3b82f6' : '#93c5fd';
    }, 500);
    return true;
}
"""

_REMOVE_HIGHLIGHT_JS = """
(sel) => {
    if (window.__optOuttaHighlightInterval) {
        clearInterval(window.__optOuttaHighlightInterval);
        window.__optOuttaHighlightInterval = null;
    }
    const el = document.querySelector(sel);
    if (el) {
        el.style.outline = '';
        el.style.outlineOffset = '';
        el.style.transition = '';
        delete el.dataset.optOuttaHighlight;
    }
}
"""


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


def profile_dir(settings: BrowserSettings) -> tuple[Path, bool]:
    """Return the Chrome profile directory to launch with, and whether it is scratch.

    By default every session gets a fresh temporary profile, so cookies and
    storage never carry from one broker to the next. With
    ``persistent_profile`` the configured ``user_data_dir`` is reused.
    """
    if settings.persistent_profile:
        data_dir = Path(settings.user_data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        cleanup_stale_profile(data_dir)
        return data_dir, False
    return Path(tempfile.mkdtemp(prefix="optout-profile-")), True


class BrowserSession:
    """Owns one Playwright Chrome context and its active page.

    Construct with :meth:`launch` (or the :func:`open_session` context
    manager, which guarantees :meth:`close` on every exit path).

    Args:
        playwright: Running Playwright driver.
        context: Browser context (persistent or scratch profile).
        page: The page all operations act on.
        settings: Browser timeouts and launch options.
        scratch_dir: Throwaway profile directory removed on :meth:`close`.
    """

    def __init__(
        self,
        playwright: Playwright,
        context: BrowserContext,
        page: Page,
        settings: BrowserSettings,
        *,
        scratch_dir: Path | None = None,
    ) -> None:
        self._playwright = playwright
        self._context = context
        self._page = page
        self._settings = settings
        self._scratch_dir = scratch_dir
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def launch(cls, settings: BrowserSettings | None = None) -> "BrowserSession":
        """Launch a headful Chrome with a dedicated automation profile.

        Raises:
            BrowserUnavailable: If no Chrome binary is found or launch fails.
        """
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings().browser

        chrome = find_chrome_binary(settings.chrome_binary)
        if chrome is None:
            raise BrowserUnavailable()

        data_dir, scratch = profile_dir(settings)
        playwright = await async_playwright().start()
        try:
            context = await playwright.chromium.launch_persistent_context(
                str(data_dir),
                executable_path=str(chrome),
                headless=settings.headless,
                args=list(settings.launch_args),
                no_viewport=True,
            )
            page = context.pages[0] if context.pages else await context.new_page()
        except PlaywrightError as exc:
            await playwright.stop()
            if scratch:
                shutil.rmtree(data_dir, ignore_errors=True)
            raise BrowserUnavailable(f"Failed to launch Chrome: {_first_line(exc)}") from exc

        logger.info("Chrome session started (%s, headless=%s, profile=%s)", chrome, settings.headless, data_dir)
        return cls(playwright, context, page, settings, scratch_dir=data_dir if scratch else None)

    async def close(self) -> None:
        """Close the context and stop Playwright. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
        except PlaywrightError as exc:
            logger.warning("Error closing browser context (non-fatal): %s", exc)
        try:
            await self._playwright.stop()
        except PlaywrightError as exc:
            logger.warning("Error stopping Playwright (non-fatal): %s", exc)
        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
        logger.info("Chrome session closed")

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has run."""
        return self._closed

    @property
    def page(self) -> Page:
        """The active Playwright page."""
        return self._page

    @property
    def current_url(self) -> str:
        """URL of the active page."""
        return self._page.url

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout_ms: int | None = None) -> None:
        """Load *url* in the active page.

        Raises:
            NavigationError: Blocked scheme or network failure.
            NavigationTimeout: The page did not load within the timeout.
        """
        if not url.lower().startswith(_ALLOWED_SCHEMES):
            raise NavigationError(url, "only http/https URLs are allowed")
        await bounded_goto(
            self._page,
            url,
            timeout_ms=timeout_ms or self._settings.navigation_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Element actions
    # ------------------------------------------------------------------

    async def _locate(self, locator: Locator, selector: str) -> Locator:
        """Wait (bounded) until *locator* resolves to at least one node."""
        poll_ms = self._settings.element_poll_timeout_ms
        try:
            await locator.wait_for(state="attached", timeout=poll_ms)
        except PlaywrightTimeout as exc:
            raise ElementNotFound(selector, poll_ms) from exc
        except PlaywrightError as exc:
            raise ElementNotInteractable(selector, "locate", _first_line(exc)) from exc
        return locator

    async def _interact(
        self,
        selector: str,
        action: str,
        operation: Callable[[Locator, int], Awaitable[Any]],
        timeout_ms: int | None,
        *,
        locator: Locator | None = None,
    ) -> None:
        target = await self._locate(locator or self._page.locator(selector).first, selector)
        timeout = timeout_ms or self._settings.action_timeout_ms
        try:
            await operation(target, timeout)
        except PlaywrightError as exc:
            raise ElementNotInteractable(selector, action, _first_line(exc)) from exc

    async def fill(self, selector: str, text: str, timeout_ms: int | None = None) -> None:
        """Fill a text input. *text* may be PII and is never logged."""
        await self._interact(selector, "fill", lambda loc, t: loc.fill(text, timeout=t), timeout_ms)

    async def select(self, selector: str, value: str, timeout_ms: int | None = None) -> None:
        """Choose an ``<option>`` by value or visible label."""
        await self._interact(selector, "select", lambda loc, t: loc.select_option(value, timeout=t), timeout_ms)

    async def check(self, selector: str, checked: bool = True, timeout_ms: int | None = None) -> None:
        """Set a checkbox or radio to *checked*."""
        await self._interact(selector, "check", lambda loc, t: loc.set_checked(checked, timeout=t), timeout_ms)

    async def click(self, selector: str, timeout_ms: int | None = None) -> None:
        """Click the first element matching *selector*."""
        await self._interact(selector, "click", lambda loc, t: loc.click(timeout=t), timeout_ms)

    async def click_text(self, selector: str, text: str, timeout_ms: int | None = None) -> None:
        """Click the first *selector* match whose visible text contains *text*.

        Matching is case-insensitive. *text* may be PII and is never logged
        or included in error messages.
        """
        locator = self._page.locator(selector).filter(has_text=text).first
        await self._interact(selector, "click", lambda loc, t: loc.click(timeout=t), timeout_ms, locator=locator)

    async def scroll_to(self, selector: str, timeout_ms: int | None = None) -> None:
        """Scroll an element into view without interacting with it."""
        await self._interact(
            selector, "scroll to", lambda loc, t: loc.scroll_into_view_if_needed(timeout=t), timeout_ms
        )

    # ------------------------------------------------------------------
    # Waits and inspection
    # ------------------------------------------------------------------

    async def wait_for(self, selector: str, timeout_ms: int) -> None:
        """Block until *selector* is present in the DOM.

        Raises:
            WaitTimeout: If it does not appear within *timeout_ms*.
        """
        try:
            await self._page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise WaitTimeout(selector, timeout_ms) from exc
        except PlaywrightError as exc:
            raise BrowserActionError(f"Wait for {selector} failed: {_first_line(exc)}") from exc

    async def wait_for_function(self, expression: str, timeout_ms: int, arg: Any = None) -> None:
        """Block until the JS *expression* returns a truthy value.

        Raises:
            WaitTimeout: If the predicate stays falsy for *timeout_ms*.
        """
        try:
            await self._page.wait_for_function(expression, arg=arg, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise WaitTimeout("page condition", timeout_ms) from exc
        except PlaywrightError as exc:
            raise BrowserActionError(f"Wait for page condition failed: {_first_line(exc)}") from exc

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate *script* in the page; structured *arg* is passed, never interpolated."""
        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise BrowserActionError(f"Script evaluation failed: {_first_line(exc)}") from exc

    async def highlight(self, selector: str) -> None:
        """Scroll to an element and draw a pulsing outline around it."""
        if not await self.evaluate(_HIGHLIGHT_JS, selector):
            raise ElementNotFound(selector, 0)

    async def remove_highlight(self, selector: str) -> None:
        """Remove a highlight added by :meth:`highlight`."""
        await self.evaluate(_REMOVE_HIGHLIGHT_JS, selector)

    async def detect_captcha(self) -> CaptchaDetection:
        """Scan the active page for an unsolved CAPTCHA widget."""
        return await detect_captcha(self._page)

    # ------------------------------------------------------------------
    # Instrumentation hooks (recorder)
    # ------------------------------------------------------------------

    async def add_init_script(self, script: str) -> None:
        """Run *script* in every document the context loads from now on.

        Raises:
            BrowserActionError: The context rejected the script.
        """
        try:
            await self._context.add_init_script(script)
        except PlaywrightError as exc:
            raise BrowserActionError(f"Could not install init script: {_first_line(exc)}") from exc

    async def expose_binding(self, name: str, callback: Callable[..., Any]) -> None:
        """Expose ``window.<name>(...)`` to pages, calling *callback* in Python.

        Raises:
            BrowserActionError: The binding could not be registered.
        """
        try:
            await self._context.expose_binding(name, callback)
        except PlaywrightError as exc:
            raise BrowserActionError(f"Could not expose binding {name}: {_first_line(exc)}") from exc

    def on_navigation(self, callback: Callable[[str], None]) -> None:
        """Call *callback(url)* whenever the main frame commits a navigation."""

        def _handler(frame: Frame) -> None:
            if frame == self._page.main_frame:
                callback(frame.url)

        self._page.on("framenavigated", _handler)


@asynccontextmanager
async def open_session(settings: BrowserSettings | None = None) -> AsyncIterator[BrowserSession]:
    """Launch a session and guarantee it is closed on every exit path."""
    session = await BrowserSession.launch(settings)
    try:
        yield session
    finally:
        await session.close()
