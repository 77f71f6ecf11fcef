"""optout test configuration: shared fixtures for unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from optout.models.broker import Broker
from optout.models.profile import Profile
from optout.settings.config import EngineSettings, RecorderSettings

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from optout.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine_settings() -> EngineSettings:
    """Engine settings with every delay switched off."""
    return EngineSettings(
        action_delay_ms_min=0,
        action_delay_ms_max=0,
        post_resume_delay_ms=0,
        wait_for_timeout_ms=1_000,
        max_wait_ms=30_000,
        report_outcomes=False,
    )


@pytest.fixture()
def recorder_settings() -> RecorderSettings:
    return RecorderSettings(click_dedupe_ms=500, element_text_max=100)


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


@pytest.fixture()
def profile() -> Profile:
    return Profile(
        first_name="Jane",
        last_name="Doe",
        email="jane@example.com",
        city="Springfield",
        state="IL",
    )


@pytest.fixture()
def brokers() -> list[Broker]:
    return [
        Broker(id="spokeo", name="Spokeo", opt_out_url="https://www.spokeo.com/optout", relist_days=90),
        Broker(id="whitepages", name="Whitepages", opt_out_url="https://www.whitepages.com/suppression"),
    ]


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that launch a real Chrome")
    config.addinivalue_line("markers", "slow: marks tests that take more than a second")


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """The code under test is asyncio-based; run anyio-marked tests on asyncio only."""
    return "asyncio"
