"""Browser session driver (Playwright).

Provides the single-page ``BrowserSession`` used by the step executor and
the action recorder, plus Chrome discovery (``chrome``), resilient
navigation (``navigation``) and CAPTCHA detection (``captcha``).
"""

from optout.browser.chrome import find_chrome_binary
from optout.browser.session import BrowserSession, open_session

__all__ = ["BrowserSession", "find_chrome_binary", "open_session"]
