"""Chrome binary discovery and automation-profile housekeeping."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

_MACOS_CANDIDATES = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
)
_WINDOWS_CANDIDATES = (
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
)
_LINUX_CANDIDATES = (
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
)

# Chrome leaves these behind in the user data dir after a crash
_STALE_LOCK_FILES = ("SingletonLock", "SingletonSocket", "SingletonCookie")


def chrome_candidates(platform: str | None = None) -> tuple[str, ...]:
    """Return the standard Chrome install paths for *platform* (default: current)."""
    platform = platform or sys.platform
    if platform == "darwin":
        return _MACOS_CANDIDATES
    if platform.startswith("win"):
        return _WINDOWS_CANDIDATES
    return _LINUX_CANDIDATES


def find_chrome_binary(configured: str = "", platform: str | None = None) -> Path | None:
    """Locate a Chrome/Chromium executable.

    Args:
        configured: Explicit path from settings; checked first when set.
        platform: Override ``sys.platform`` (for tests).

    Returns:
        The first existing executable path, or ``None``.
    """
    candidates = [configured] if configured else []
    candidates.extend(chrome_candidates(platform))
    for candidate in candidates:
        path = Path(candidate)
        if path.exists():
            return path
    return None


def cleanup_stale_profile(data_dir: Path) -> None:
    """Remove lock files left by a previous automation Chrome in *data_dir*.

    The automation profile is dedicated to this tool, never the user's own
    Chrome profile, so stale locks are safe to drop.
    """
    for name in _STALE_LOCK_FILES:
        lock = data_dir / name
        if lock.is_symlink() or lock.exists():
            try:
                lock.unlink()
                logger.debug("Removed stale Chrome lock %s", lock)
            except OSError as exc:
                logger.warning("Could not remove stale Chrome lock %s: %s", lock, exc)
