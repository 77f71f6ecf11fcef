"""Static safety checks for playbook step sequences.

Applied before a playbook is saved locally, submitted to the catalog, or
executed. Validation is all-or-nothing: every problem found is collected
and reported together in ``PlaybookValidationError.problems``; a sequence
with any problem is rejected in full.

Two passes:

1. **Structural**: step count, dense positions, selector safety, navigate
   URL safety, value/description/wait limits.
2. **Personal data**: free-text fields must not contain email, phone or
   SSN-shaped strings; playbooks reference profile fields, never values.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from optout.exceptions import PlaybookValidationError
from optout.models.playbook import SELECTOR_ACTIONS, ActionKind, PlaybookStep

MIN_STEPS = 1
MAX_STEPS = 100
MAX_SELECTOR_LENGTH = 500
MAX_VALUE_LENGTH = 2000
MAX_DESCRIPTION_LENGTH = 500
MAX_INSTRUCTIONS_LENGTH = 2000
MAX_WAIT_MS = 30_000

BLOCKED_URL_SCHEMES: tuple[str, ...] = (
    "javascript:",
    "data:",
    "file:",
    "blob:",
    "vbscript:",
    "about:",
    "chrome:",
    "chrome-extension:",
)

BLOCKED_SELECTOR_PATTERNS: tuple[str, ...] = (
    "javascript:",
    "<script",
    "onerror",
    "onload",
    "onclick",
    "onmouseover",
    "onfocus",
    "onblur",
    "onchange",
    "oninput",
    "onsubmit",
    "onkeydown",
    "onkeyup",
    "onkeypress",
    "onmousedown",
    "onmouseup",
    "ondblclick",
    "oncontextmenu",
    "expression(",
    "url(",
    "import(",
)

# Any other inline handler written as an attribute assignment, e.g. [onpointerdown=...]
_EVENT_HANDLER_RE = re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)

_SCRIPT_VALUE_PATTERNS: tuple[str, ...] = ("<script", "javascript:", "vbscript:")

_LOCAL_HOSTNAMES = {"localhost", "localhost.localdomain"}
_LOCAL_SUFFIXES = (".localhost", ".local", ".internal")

PII_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("an email address", re.compile(r"\S+@\S+\.\S+")),
    ("an SSN", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("a phone number", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_steps(steps: Sequence[PlaybookStep]) -> None:
    """Validate a parsed step sequence.

    Raises:
        PlaybookValidationError: With every problem found, if any.
    """
    problems = collect_problems(steps)
    if problems:
        raise PlaybookValidationError(problems)


def validate_payload(raw_steps: Iterable[Mapping[str, Any]]) -> list[PlaybookStep]:
    """Parse raw step dicts and validate them.

    Parse errors (unknown ``action``, unknown ``profile_key``, bad types) are
    reported as itemized problems alongside the structural checks.

    Returns:
        The parsed steps, if valid.

    Raises:
        PlaybookValidationError: With every problem found, if any.
    """
    raw_list = list(raw_steps)
    steps: list[PlaybookStep] = []
    problems: list[str] = []

    for index, raw in enumerate(raw_list, start=1):
        try:
            steps.append(PlaybookStep.model_validate(raw))
        except ValidationError as exc:
            for err in exc.errors():
                field = ".".join(str(p) for p in err["loc"]) or "step"
                problems.append(f"Step {index}: {field}: {err['msg']}")

    if problems:
        # Length is still checked so an oversize payload reports that too.
        if not MIN_STEPS <= len(raw_list) <= MAX_STEPS:
            problems.insert(0, _length_problem(len(raw_list)))
        raise PlaybookValidationError(problems)

    validate_steps(steps)
    return steps


def collect_problems(steps: Sequence[PlaybookStep]) -> list[str]:
    """Return every validation problem for *steps* (empty if valid)."""
    problems: list[str] = []
    if not MIN_STEPS <= len(steps) <= MAX_STEPS:
        problems.append(_length_problem(len(steps)))

    for index, step in enumerate(steps, start=1):
        problems.extend(_check_step(index, step))

    problems.extend(scan_for_pii(steps))
    return problems


def scan_for_pii(steps: Sequence[PlaybookStep]) -> list[str]:
    """Report free-text fields containing email, phone or SSN-shaped text."""
    problems: list[str] = []
    for step in steps:
        for field_name in ("value", "description", "instructions"):
            text = getattr(step, field_name)
            if not text:
                continue
            for label, pattern in PII_PATTERNS:
                if pattern.search(text):
                    problems.append(
                        f"Step {step.position}: {field_name} appears to contain {label}; "
                        "playbooks must reference profile fields instead of personal data"
                    )
                    break
    return problems


def check_navigate_url(url: str) -> str | None:
    """Return a problem description if *url* is not a safe navigate target."""
    candidate = url.strip()
    if not candidate:
        return "navigate URL is empty"

    lower = candidate.lower()
    for scheme in BLOCKED_URL_SCHEMES:
        if lower.startswith(scheme):
            return f"navigate URL uses blocked scheme '{scheme}'; only http:// and https:// are allowed"

    parts = urlsplit(candidate)
    if parts.scheme.lower() not in ("http", "https"):
        return "navigate URL must be an absolute http:// or https:// URL"

    host = (parts.hostname or "").lower()
    if not host:
        return "navigate URL must include a host"
    if _is_local_host(host):
        return f"navigate URL points to a local or internal address ({host})"
    return None


def check_selector(selector: str) -> str | None:
    """Return a problem description if *selector* is unsafe."""
    if len(selector) > MAX_SELECTOR_LENGTH:
        return f"selector is {len(selector)} characters (maximum {MAX_SELECTOR_LENGTH})"
    lower = selector.lower()
    for pattern in BLOCKED_SELECTOR_PATTERNS:
        if pattern in lower:
            return f"selector contains blocked pattern '{pattern}'"
    if _EVENT_HANDLER_RE.search(selector):
        return "selector contains an inline event handler"
    return None


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _length_problem(count: int) -> str:
    if count < MIN_STEPS:
        return "Playbook must have at least one step"
    return f"Playbook has {count} steps (maximum {MAX_STEPS})"


def _check_step(index: int, step: PlaybookStep) -> list[str]:
    ctx = f"Step {step.position} ({step.action.value})"
    problems: list[str] = []

    if step.position != index:
        problems.append(f"{ctx}: position should be {index}; positions must be 1-based and contiguous")

    selector = (step.selector or "").strip()
    if step.action in SELECTOR_ACTIONS and not selector:
        problems.append(f"{ctx}: requires a selector")
    if selector:
        issue = check_selector(selector)
        if issue:
            problems.append(f"{ctx}: {issue}")

    if step.action == ActionKind.NAVIGATE:
        issue = check_navigate_url(step.value or "")
        if issue:
            problems.append(f"{ctx}: {issue}")
    elif step.value:
        if len(step.value) > MAX_VALUE_LENGTH:
            problems.append(f"{ctx}: value is {len(step.value)} characters (maximum {MAX_VALUE_LENGTH})")
        lower = step.value.lower()
        if any(p in lower for p in _SCRIPT_VALUE_PATTERNS):
            problems.append(f"{ctx}: value contains script content")

    if step.action == ActionKind.WAIT and step.value and step.value.strip().isdigit():
        if int(step.value) > MAX_WAIT_MS:
            problems.append(f"{ctx}: wait value is {step.value} ms (maximum {MAX_WAIT_MS})")

    if step.wait_after_ms > MAX_WAIT_MS:
        problems.append(f"{ctx}: wait_after_ms is {step.wait_after_ms} (maximum {MAX_WAIT_MS})")

    if len(step.description) > MAX_DESCRIPTION_LENGTH:
        problems.append(
            f"{ctx}: description is {len(step.description)} characters (maximum {MAX_DESCRIPTION_LENGTH})"
        )
    if step.instructions and len(step.instructions) > MAX_INSTRUCTIONS_LENGTH:
        problems.append(
            f"{ctx}: instructions are {len(step.instructions)} characters (maximum {MAX_INSTRUCTIONS_LENGTH})"
        )
    return problems


def _is_local_host(host: str) -> bool:
    if host in _LOCAL_HOSTNAMES or host.endswith(_LOCAL_SUFFIXES):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )
