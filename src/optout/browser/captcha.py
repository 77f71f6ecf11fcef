"""CAPTCHA detection.

Detection only: the engine never attempts to solve or bypass a CAPTCHA.
When a step fails on a page that shows one, the failure prompt tells the
user so they can solve it in the browser and retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from playwright.async_api import Page


class CaptchaType(str, Enum):
    """Known CAPTCHA provider types."""

    RECAPTCHA_V2 = "recaptcha_v2"
    RECAPTCHA_V3 = "recaptcha_v3"
    HCAPTCHA = "hcaptcha"
    CLOUDFLARE_TURNSTILE = "cloudflare_turnstile"
    FUNCAPTCHA = "funcaptcha"
    UNKNOWN = "unknown"


@dataclass
class CaptchaDetection:
    """Result of scanning a page for CAPTCHAs."""

    detected: bool = False
    captcha_type: CaptchaType = CaptchaType.UNKNOWN
    element_selector: str = ""
    page_url: str = ""


# Signatures: (CSS selector, CaptchaType)
_CAPTCHA_SIGNATURES: list[tuple[str, CaptchaType]] = [
    ('iframe[src*="google.com/recaptcha"]', CaptchaType.RECAPTCHA_V2),
    ('iframe[src*="recaptcha/api"]', CaptchaType.RECAPTCHA_V2),
    (".g-recaptcha", CaptchaType.RECAPTCHA_V2),
    ('script[src*="recaptcha/api.js?render="]', CaptchaType.RECAPTCHA_V3),
    ('iframe[src*="hcaptcha.com"]', CaptchaType.HCAPTCHA),
    (".h-captcha", CaptchaType.HCAPTCHA),
    ('iframe[src*="challenges.cloudflare.com"]', CaptchaType.CLOUDFLARE_TURNSTILE),
    (".cf-turnstile", CaptchaType.CLOUDFLARE_TURNSTILE),
    ('iframe[src*="funcaptcha.com"]', CaptchaType.FUNCAPTCHA),
    ("#funcaptcha", CaptchaType.FUNCAPTCHA),
]

# A widget whose response textarea is filled has already been solved.
_SOLVED_JS = """
() => {
    const names = ['g-recaptcha-response', 'h-captcha-response', 'cf-turnstile-response'];
    return names.some(n => {
        const el = document.querySelector(`[name="${n}"]`);
        return !!(el && el.value && el.value.length > 0);
    });
}
"""


async def detect_captcha(page: Page) -> CaptchaDetection:
    """Scan the current page for an unsolved CAPTCHA widget.

    Args:
        page: Playwright ``Page`` object.

    Returns:
        A ``CaptchaDetection`` with details if a CAPTCHA is found.
    """
    detection = CaptchaDetection(page_url=page.url)

    for selector, captcha_type in _CAPTCHA_SIGNATURES:
        try:
            if await page.locator(selector).count() > 0:
                detection.detected = True
                detection.captcha_type = captcha_type
                detection.element_selector = selector
                break
        except PlaywrightError:
            continue

    if detection.detected:
        try:
            if await page.evaluate(_SOLVED_JS):
                logger.debug("CAPTCHA widget on %s is already solved", page.url)
                return CaptchaDetection(page_url=page.url)
        except PlaywrightError:
            pass
        logger.info(
            "CAPTCHA detected: %s (%s) on %s", detection.captcha_type.value, detection.element_selector, page.url
        )

    return detection
