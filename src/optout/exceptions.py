"""optout exception hierarchy.

Errors fall into a few families:

* **Environment**: the browser cannot be found or launched. Fatal to a run.
* **Browser actions**: navigation, element lookup and wait failures raised by
  the session driver. The step executor converts these into step failures.
* **Validation**: malformed or unsafe playbooks, always itemized.
* **Concurrency / lookup**: a run or recording is already active, or there is
  nothing active to act on.
* **Collaborators**: catalog HTTP errors and local store I/O errors.
"""

from __future__ import annotations


class OptOutError(Exception):
    """Base exception for all optout-specific errors."""


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class BrowserUnavailable(OptOutError):
    """Raised when no compatible browser binary is found or it fails to launch."""

    def __init__(self, reason: str = "Chrome not found. Please install Google Chrome.") -> None:
        self.reason = reason
        super().__init__(reason)


# ---------------------------------------------------------------------------
# Browser actions (step-level, recoverable by the user)
# ---------------------------------------------------------------------------


class BrowserActionError(OptOutError):
    """Base class for failures of a single driver operation."""


class NavigationError(BrowserActionError):
    """Raised when navigation to a URL fails for a non-timeout reason.

    Attributes:
        url: The URL that could not be loaded.
        reason: Short description of the failure (DNS, refused, blocked scheme, …).
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class NavigationTimeout(BrowserActionError):
    """Raised when every wait strategy timed out loading a URL."""

    def __init__(self, url: str, timeout_ms: int) -> None:
        self.url = url
        self.timeout_ms = timeout_ms
        super().__init__(f"Navigation to {url} timed out after {timeout_ms}ms")


class ElementNotFound(BrowserActionError):
    """Raised when a selector matches no element within the poll window."""

    def __init__(self, selector: str, timeout_ms: int) -> None:
        self.selector = selector
        self.timeout_ms = timeout_ms
        super().__init__(f"Element not found: {selector} (waited {timeout_ms}ms)")


class ElementNotInteractable(BrowserActionError):
    """Raised when an element exists but cannot be filled, selected or clicked."""

    def __init__(self, selector: str, action: str, detail: str = "") -> None:
        self.selector = selector
        self.action = action
        self.detail = detail
        message = f"Cannot {action} element {selector}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class WaitTimeout(BrowserActionError):
    """Raised when a wait-for condition is not met before its timeout."""

    def __init__(self, target: str, timeout_ms: int) -> None:
        self.target = target
        self.timeout_ms = timeout_ms
        super().__init__(f"Timed out after {timeout_ms}ms waiting for: {target}")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class PlaybookValidationError(OptOutError):
    """Raised when a step sequence fails validation.

    Attributes:
        problems: One human-readable entry per violation, in step order.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f"; … ({len(self.problems) - 5} more)"
        super().__init__(f"Playbook failed validation: {summary}")


class PlaybookSignatureError(OptOutError):
    """Raised when a community playbook's signature is missing or invalid."""


class PlaybookNotFoundError(OptOutError):
    """Raised when a playbook selection cannot be resolved."""

    def __init__(self, selection: str, broker_id: str = "") -> None:
        self.selection = selection
        self.broker_id = broker_id
        super().__init__(f"No playbook available for selection '{selection}'")


# ---------------------------------------------------------------------------
# Concurrency and lookup
# ---------------------------------------------------------------------------


class AlreadyRunningError(OptOutError):
    """Raised when a run is started while another is running or waiting."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"An opt-out run is already in progress ({run_id})")


class RecordingActiveError(OptOutError):
    """Raised when a recording is started while another is active."""

    def __init__(self) -> None:
        super().__init__("A recording session is already active.")


class NoActiveRunError(OptOutError):
    """Raised when continue/cancel is issued with no matching active run."""

    def __init__(self, detail: str = "No active opt-out run") -> None:
        super().__init__(detail)


class NoActiveRecordingError(OptOutError):
    """Raised when a recording command is issued with no active recording."""

    def __init__(self) -> None:
        super().__init__("No active recording session.")


class InvalidRunRequestError(OptOutError):
    """Raised when a run request names no known broker or lacks selections."""


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class CatalogError(OptOutError):
    """Raised when the playbook catalog API returns an error or malformed data.

    Attributes:
        status_code: HTTP status (0 for transport errors).
        detail: Response body excerpt or transport error text.
    """

    def __init__(self, operation: str, status_code: int = 0, detail: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        where = f" ({status_code})" if status_code else ""
        super().__init__(f"Catalog {operation} error{where}: {detail[:200]}")


class StoreError(OptOutError):
    """Raised when a local JSON store cannot be read or written."""
