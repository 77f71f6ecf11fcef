"""Unit tests for optout.playbook.validation: static step safety checks."""

from __future__ import annotations

import pytest

from optout.exceptions import PlaybookValidationError
from optout.models.playbook import ActionKind
from optout.playbook.validation import (
    MAX_STEPS,
    check_navigate_url,
    check_selector,
    collect_problems,
    scan_for_pii,
    validate_payload,
    validate_steps,
)
from factories import make_steps

VALID_FLOW = (
    {"action": "navigate", "value": "https://www.spokeo.com/optout"},
    {"action": "fill", "selector": "#email", "profile_key": "email", "description": "Enter email"},
    {"action": "captcha", "description": "Solve the CAPTCHA"},
    {"action": "click", "selector": "button[type=submit]"},
    {"action": "done"},
)


class TestValidateSteps:
    """Tests for the structural and PII passes together."""

    def test_valid_flow_passes(self) -> None:
        validate_steps(make_steps(*VALID_FLOW))

    def test_empty_playbook_rejected(self) -> None:
        with pytest.raises(PlaybookValidationError) as exc_info:
            validate_steps([])
        assert exc_info.value.problems == ["Playbook must have at least one step"]

    def test_too_many_steps_rejected(self) -> None:
        steps = make_steps(*({"action": "wait"} for _ in range(MAX_STEPS + 1)))
        problems = collect_problems(steps)
        assert problems[0] == f"Playbook has {MAX_STEPS + 1} steps (maximum {MAX_STEPS})"

    def test_exactly_max_steps_allowed(self) -> None:
        steps = make_steps(*({"action": "wait"} for _ in range(MAX_STEPS)))
        assert collect_problems(steps) == []

    def test_positions_must_be_contiguous(self) -> None:
        steps = make_steps({"action": "done"}, {"action": "done"})
        steps[1] = steps[1].model_copy(update={"position": 3})
        problems = collect_problems(steps)
        assert any("position should be 2" in p for p in problems)

    @pytest.mark.parametrize(
        "action",
        ["fill", "select", "check", "click", "wait_for", "scroll_to", "find_and_click"],
    )
    def test_selector_actions_need_selector(self, action: str) -> None:
        problems = collect_problems(make_steps({"action": action, "value": "x"}))
        assert problems == [f"Step 1 ({action}): requires a selector"]

    def test_every_problem_is_reported(self) -> None:
        steps = make_steps(
            {"action": "navigate", "value": "javascript:alert(1)"},
            {"action": "click", "selector": "a[onclick=evil]"},
            {"action": "fill", "selector": "#x", "value": "jane@example.com"},
        )
        with pytest.raises(PlaybookValidationError) as exc_info:
            validate_steps(steps)
        assert len(exc_info.value.problems) == 3

    def test_wait_after_limit(self) -> None:
        steps = make_steps({"action": "click", "selector": "#go", "wait_after_ms": 30_001})
        assert "wait_after_ms is 30001" in collect_problems(steps)[0]

    def test_description_limit(self) -> None:
        steps = make_steps({"action": "done", "description": "x" * 501})
        assert "description is 501 characters" in collect_problems(steps)[0]

    def test_value_with_script_rejected(self) -> None:
        steps = make_steps({"action": "fill", "selector": "#q", "value": "<script>alert(1)</script>"})
        assert "value contains script content" in collect_problems(steps)[0]


class TestNavigateUrl:
    """Tests for check_navigate_url."""

    @pytest.mark.parametrize("url", ["https://example.com/optout", "http://broker.com"])
    def test_public_http_urls_allowed(self, url: str) -> None:
        assert check_navigate_url(url) is None

    @pytest.mark.parametrize(
        "url",
        ["javascript:void(0)", "data:text/html,hi", "file:///etc/passwd", "chrome://settings", "about:blank"],
    )
    def test_blocked_schemes(self, url: str) -> None:
        assert "blocked scheme" in check_navigate_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8080/",
            "http://127.0.0.1/",
            "http://10.0.0.5/",
            "http://192.168.1.1/admin",
            "http://printer.local/",
            "http://169.254.169.254/latest",
        ],
    )
    def test_local_targets_rejected(self, url: str) -> None:
        assert "local or internal" in check_navigate_url(url)

    def test_relative_url_rejected(self) -> None:
        assert check_navigate_url("/optout") == "navigate URL must be an absolute http:// or https:// URL"

    def test_empty_url(self) -> None:
        assert check_navigate_url("  ") == "navigate URL is empty"


class TestSelectors:
    """Tests for check_selector."""

    def test_plain_css_allowed(self) -> None:
        assert check_selector("form#optout input[name='email']") is None

    @pytest.mark.parametrize("selector", ["div[onload]", "a[href^='javascript:']", "div<script", "x:url(foo)"])
    def test_blocked_patterns(self, selector: str) -> None:
        assert "blocked pattern" in check_selector(selector)

    def test_unlisted_event_handler_attribute(self) -> None:
        assert check_selector("[onpointerdown=go]") == "selector contains an inline event handler"

    def test_selector_length(self) -> None:
        assert "maximum 500" in check_selector("a" * 501)


class TestPiiScan:
    """Tests for scan_for_pii."""

    @pytest.mark.parametrize(
        ("text", "label"),
        [
            ("mail jane.doe@example.com", "an email address"),
            ("call 555-123-4567", "a phone number"),
            ("ssn 123-45-6789", "an SSN"),
        ],
    )
    def test_detects_personal_data(self, text: str, label: str) -> None:
        problems = scan_for_pii(make_steps({"action": "done", "description": text}))
        assert len(problems) == 1
        assert label in problems[0]

    def test_instructions_are_scanned(self) -> None:
        steps = make_steps({"action": "user_prompt", "instructions": "Reply to jane@example.com"})
        assert scan_for_pii(steps)

    def test_profile_keys_are_fine(self) -> None:
        assert scan_for_pii(make_steps({"action": "fill", "selector": "#e", "profile_key": "email"})) == []


class TestValidatePayload:
    """Tests for parsing raw step dicts."""

    def test_returns_parsed_steps(self) -> None:
        steps = validate_payload([{"position": 1, "action": "done"}])
        assert steps[0].action == ActionKind.DONE

    def test_unknown_action_reported(self) -> None:
        with pytest.raises(PlaybookValidationError) as exc_info:
            validate_payload([{"position": 1, "action": "execute_js"}])
        assert exc_info.value.problems[0].startswith("Step 1: action:")

    def test_unknown_profile_key_reported(self) -> None:
        with pytest.raises(PlaybookValidationError) as exc_info:
            validate_payload([{"position": 1, "action": "fill", "selector": "#s", "profile_key": "ssn"}])
        assert "profile_key" in exc_info.value.problems[0]

    def test_empty_payload(self) -> None:
        with pytest.raises(PlaybookValidationError):
            validate_payload([])


class TestReferenceCases:
    """The canonical accept/reject cases for shared playbooks."""

    def test_three_step_example_accepted(self) -> None:
        validate_steps(
            make_steps(
                {"action": "navigate", "value": "https://example.com/optout"},
                {"action": "fill", "selector": "#email", "profile_key": "email"},
                {"action": "click", "selector": "button[type=submit]"},
            )
        )

    @pytest.mark.parametrize(
        "step",
        [
            {"action": "navigate", "value": "javascript:alert(1)"},
            {"action": "click", "selector": "img[onerror=alert(1)]"},
            {"action": "fill", "selector": "#email", "value": "user@example.com"},
            {"action": "click", "selector": "#go", "wait_after_ms": 40_000},
        ],
    )
    def test_rejected(self, step: dict) -> None:
        with pytest.raises(PlaybookValidationError):
            validate_steps(make_steps(step))
