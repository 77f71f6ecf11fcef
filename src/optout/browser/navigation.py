"""Bounded page navigation.

Wraps Playwright's ``page.goto`` in exactly one attempt bounded by the
caller's timeout and maps Playwright failures onto the driver's error types.
Broker opt-out pages are often heavy with analytics and chat widgets that
keep the network busy, so the default wait strategy is ``load`` rather than
``networkidle``. A timed-out load is never re-issued here; retrying is the
run state machine's ``step_failed`` protocol.
"""

from __future__ import annotations

import logging
from typing import Literal

from playwright.async_api import Error as PlaywrightError, Page, Response, TimeoutError as PlaywrightTimeout

from optout.exceptions import NavigationError, NavigationTimeout

logger = logging.getLogger(__name__)

# Playwright error substrings reported as a short network reason.
_NETWORK_ERRORS: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "ERR_CONNECTION_CLOSED",
    "ERR_SSL_PROTOCOL_ERROR",
    "ERR_CERT_AUTHORITY_INVALID",
    "ERR_CERT_COMMON_NAME_INVALID",
    "ERR_ADDRESS_UNREACHABLE",
    "ERR_INTERNET_DISCONNECTED",
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]


async def bounded_goto(
    page: Page,
    url: str,
    *,
    timeout_ms: int = 30_000,
    wait_until: WaitUntil = "load",
) -> Response | None:
    """Navigate to *url* once, within *timeout_ms*.

    Args:
        page: Playwright page instance.
        url: Target URL to navigate to.
        timeout_ms: Upper bound for the whole navigation in milliseconds.
        wait_until: Load state that counts as "navigated".

    Returns:
        The Playwright ``Response`` for the main frame navigation,
        or ``None`` if the page did not produce a response.

    Raises:
        NavigationTimeout: *wait_until* was not reached within *timeout_ms*.
        NavigationError: Network failure or any other Playwright error.
    """
    logger.debug("goto %s (wait_until=%s, timeout=%dms)", url, wait_until, timeout_ms)
    try:
        return await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
    except PlaywrightTimeout as exc:
        logger.warning("Navigation to %s timed out after %dms (wait_until=%s)", url, timeout_ms, wait_until)
        raise NavigationTimeout(url, timeout_ms) from exc
    except PlaywrightError as exc:
        error_msg = str(exc)
        for pattern in _NETWORK_ERRORS:
            if pattern in error_msg:
                reason = pattern.replace("ERR_", "").replace("_", " ").lower()
                logger.warning("Navigation to %s failed: %s", url, pattern)
                raise NavigationError(url, reason) from exc
        raise NavigationError(url, error_msg.splitlines()[0] if error_msg else "unknown error") from exc
