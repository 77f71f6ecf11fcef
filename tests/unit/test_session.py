"""Unit tests for optout.browser.session: driver error mapping on a mocked page."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from optout.browser.session import BrowserSession, open_session, profile_dir
from optout.exceptions import (
    BrowserActionError,
    BrowserUnavailable,
    ElementNotFound,
    ElementNotInteractable,
    NavigationError,
    WaitTimeout,
)
from optout.settings.config import BrowserSettings


@pytest.fixture()
def settings() -> BrowserSettings:
    return BrowserSettings(element_poll_timeout_ms=2000, action_timeout_ms=3000, navigation_timeout_ms=4000)


@pytest.fixture()
def locator() -> MagicMock:
    loc = MagicMock()
    loc.wait_for = AsyncMock()
    loc.fill = AsyncMock()
    loc.click = AsyncMock()
    loc.select_option = AsyncMock()
    loc.set_checked = AsyncMock()
    return loc


@pytest.fixture()
def page(locator: MagicMock) -> MagicMock:
    page = MagicMock()
    page.url = "https://example.com/optout"
    page.locator.return_value.first = locator
    page.locator.return_value.filter.return_value.first = locator
    page.goto = AsyncMock()
    page.evaluate = AsyncMock()
    page.wait_for_selector = AsyncMock()
    return page


@pytest.fixture()
def session(page: MagicMock, settings: BrowserSettings) -> BrowserSession:
    return BrowserSession(AsyncMock(), AsyncMock(), page, settings)


class TestNavigate:
    """Tests for BrowserSession.navigate."""

    @pytest.mark.anyio
    async def test_uses_configured_timeout(self, session: BrowserSession, page: MagicMock) -> None:
        await session.navigate("https://example.com/optout")
        page.goto.assert_awaited_once_with("https://example.com/optout", wait_until="load", timeout=4000)

    @pytest.mark.anyio
    @pytest.mark.parametrize("url", ["javascript:alert(1)", "file:///etc/passwd", "about:blank"])
    async def test_rejects_non_http(self, session: BrowserSession, page: MagicMock, url: str) -> None:
        with pytest.raises(NavigationError):
            await session.navigate(url)
        page.goto.assert_not_awaited()

    def test_current_url(self, session: BrowserSession) -> None:
        assert session.current_url == "https://example.com/optout"


class TestElementActions:
    """Tests for fill/select/check/click."""

    @pytest.mark.anyio
    async def test_fill(self, session: BrowserSession, page: MagicMock, locator: MagicMock) -> None:
        await session.fill("#email", "value")
        page.locator.assert_called_with("#email")
        locator.wait_for.assert_awaited_once_with(state="attached", timeout=2000)
        locator.fill.assert_awaited_once_with("value", timeout=3000)

    @pytest.mark.anyio
    async def test_missing_element(self, session: BrowserSession, locator: MagicMock) -> None:
        locator.wait_for.side_effect = PlaywrightTimeout("Timeout 2000ms exceeded")
        with pytest.raises(ElementNotFound) as exc_info:
            await session.click("#gone")
        assert exc_info.value.selector == "#gone"
        locator.click.assert_not_awaited()

    @pytest.mark.anyio
    async def test_not_interactable(self, session: BrowserSession, locator: MagicMock) -> None:
        locator.fill.side_effect = PlaywrightError("Element is not an <input>")
        with pytest.raises(ElementNotInteractable):
            await session.fill("#div", "secret value")

    @pytest.mark.anyio
    async def test_error_never_contains_fill_text(self, session: BrowserSession, locator: MagicMock) -> None:
        locator.fill.side_effect = PlaywrightError("element detached")
        with pytest.raises(ElementNotInteractable) as exc_info:
            await session.fill("#name", "Jane Doe")
        assert "Jane" not in str(exc_info.value)

    @pytest.mark.anyio
    async def test_click_text_filters_by_text(self, session: BrowserSession, page: MagicMock, locator) -> None:
        await session.click_text(".result", "Jane Doe")
        page.locator.return_value.filter.assert_called_once_with(has_text="Jane Doe")
        locator.click.assert_awaited_once_with(timeout=3000)

    @pytest.mark.anyio
    async def test_check_false(self, session: BrowserSession, locator: MagicMock) -> None:
        await session.check("#agree", checked=False)
        locator.set_checked.assert_awaited_once_with(False, timeout=3000)


class TestWaitsAndScripts:
    """Tests for wait_for, evaluate and highlight."""

    @pytest.mark.anyio
    async def test_wait_for_timeout(self, session: BrowserSession, page: MagicMock) -> None:
        page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout")
        with pytest.raises(WaitTimeout):
            await session.wait_for("#done", 1000)

    @pytest.mark.anyio
    async def test_evaluate_passes_argument(self, session: BrowserSession, page: MagicMock) -> None:
        page.evaluate.return_value = 42
        assert await session.evaluate("(x) => x * 2", 21) == 42
        page.evaluate.assert_awaited_once_with("(x) => x * 2", 21)

    @pytest.mark.anyio
    async def test_evaluate_error(self, session: BrowserSession, page: MagicMock) -> None:
        page.evaluate.side_effect = PlaywrightError("ReferenceError: foo is not defined")
        with pytest.raises(BrowserActionError, match="ReferenceError"):
            await session.evaluate("foo")

    @pytest.mark.anyio
    async def test_highlight_missing_element(self, session: BrowserSession, page: MagicMock) -> None:
        page.evaluate.return_value = False
        with pytest.raises(ElementNotFound):
            await session.highlight("#nothing")


class TestLifecycle:
    """Tests for close and launch."""

    @pytest.mark.anyio
    async def test_close_is_idempotent(self, page: MagicMock, settings: BrowserSettings) -> None:
        playwright, context = AsyncMock(), AsyncMock()
        session = BrowserSession(playwright, context, page, settings)
        await session.close()
        await session.close()
        assert session.closed
        context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    @pytest.mark.anyio
    async def test_launch_without_chrome(self, tmp_path) -> None:
        settings = BrowserSettings(chrome_binary=str(tmp_path / "no-chrome"), user_data_dir=str(tmp_path / "p"))
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr("optout.browser.session.find_chrome_binary", lambda configured: None)
            with pytest.raises(BrowserUnavailable):
                async with open_session(settings):
                    pass

    @pytest.mark.anyio
    async def test_close_removes_scratch_profile(self, page: MagicMock, settings: BrowserSettings, tmp_path) -> None:
        scratch = tmp_path / "optout-profile-x"
        (scratch / "Default").mkdir(parents=True)
        (scratch / "Default" / "Cookies").write_text("session=abc")
        session = BrowserSession(AsyncMock(), AsyncMock(), page, settings, scratch_dir=scratch)
        await session.close()
        assert not scratch.exists()

    @pytest.mark.anyio
    async def test_close_keeps_persistent_profile(self, page: MagicMock, settings: BrowserSettings, tmp_path) -> None:
        session = BrowserSession(AsyncMock(), AsyncMock(), page, settings)
        await session.close()
        assert tmp_path.exists()


class TestProfileDir:
    """Tests for per-session profile selection."""

    def test_fresh_scratch_profile_by_default(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr("tempfile.tempdir", str(tmp_path))
        settings = BrowserSettings(user_data_dir=str(tmp_path / "persistent"))

        first, first_scratch = profile_dir(settings)
        second, second_scratch = profile_dir(settings)

        assert first_scratch and second_scratch
        assert first != second
        assert first.is_dir() and second.is_dir()
        assert not (tmp_path / "persistent").exists()

    def test_persistent_profile_is_reused_and_unlocked(self, tmp_path) -> None:
        data_dir = tmp_path / "persistent"
        data_dir.mkdir()
        (data_dir / "SingletonLock").write_text("")
        settings = BrowserSettings(persistent_profile=True, user_data_dir=str(data_dir))

        path, scratch = profile_dir(settings)

        assert path == data_dir
        assert not scratch
        assert not (data_dir / "SingletonLock").exists()


class TestInstrumentationHooks:
    """Recorder hooks map Playwright failures to driver errors."""

    @pytest.mark.anyio
    async def test_expose_binding_error(self, page: MagicMock, settings: BrowserSettings) -> None:
        context = AsyncMock()
        context.expose_binding.side_effect = PlaywrightError("Function \"__optout\" has been already registered")
        session = BrowserSession(AsyncMock(), context, page, settings)
        with pytest.raises(BrowserActionError, match="already registered"):
            await session.expose_binding("__optout", lambda source, payload: None)

    @pytest.mark.anyio
    async def test_add_init_script_error(self, page: MagicMock, settings: BrowserSettings) -> None:
        context = AsyncMock()
        context.add_init_script.side_effect = PlaywrightError("Target closed")
        session = BrowserSession(AsyncMock(), context, page, settings)
        with pytest.raises(BrowserActionError, match="Target closed"):
            await session.add_init_script("window.x = 1")
