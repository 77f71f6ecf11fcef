"""Run-time models: step outcomes, human-action requests and progress payloads."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from optout.models.states import RunStatus


# ---------------------------------------------------------------------------
# Human action requests
# ---------------------------------------------------------------------------


class ActionRequiredType(str, Enum):
    """What the user has to do before the run can continue."""

    SOLVE_CAPTCHA = "solve_captcha"
    VERIFY_EMAIL = "verify_email"
    VERIFY_PHONE = "verify_phone"
    MANUAL_STEP = "manual_step"
    USER_PROMPT = "user_prompt"
    STEP_FAILED = "step_failed"


class ActionRequired(BaseModel):
    """A typed request for human input attached to a progress event."""

    type: ActionRequiredType
    message: str
    description: str | None = None
    captcha_type: str | None = None
    step_position: int | None = None
    step_description: str | None = None

    @classmethod
    def solve_captcha(cls, message: str, captcha_type: str | None = None) -> "ActionRequired":
        return cls(type=ActionRequiredType.SOLVE_CAPTCHA, message=message, captcha_type=captcha_type)

    @classmethod
    def user_prompt(cls, message: str, description: str | None = None) -> "ActionRequired":
        return cls(type=ActionRequiredType.USER_PROMPT, message=message, description=description)

    @classmethod
    def manual_step(cls, message: str) -> "ActionRequired":
        return cls(type=ActionRequiredType.MANUAL_STEP, message=message)

    @classmethod
    def step_failed(
        cls,
        position: int,
        description: str,
        error: str,
        captcha_type: str | None = None,
    ) -> "ActionRequired":
        message = f"Step {position} failed: {error}"
        if captcha_type:
            message += " A CAPTCHA appears to be blocking the page; solve it, then retry."
        return cls(
            type=ActionRequiredType.STEP_FAILED,
            message=message,
            captcha_type=captcha_type,
            step_position=position,
            step_description=description,
        )


class ContinueResponse(str, Enum):
    """Explicit user responses to a suspension. ``None`` means plain continue."""

    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


# ---------------------------------------------------------------------------
# Step outcomes
# ---------------------------------------------------------------------------


class OutcomeKind(str, Enum):
    """Result variants of executing one step."""

    SUCCESS = "success"
    NEEDS_HUMAN_ACTION = "needs_human_action"
    FAILURE = "failure"


class StepOutcome(BaseModel):
    """Structured result of ``StepExecutor.execute``.

    ``note`` carries the downgraded failure reason for optional steps.
    ``highlighted_selector`` names an element the executor highlighted for a
    manual prompt; the runner clears it once the user continues.
    """

    kind: OutcomeKind
    position: int
    action_required: ActionRequired | None = None
    error: str | None = None
    note: str | None = None
    terminal: bool = False
    highlighted_selector: str | None = None

    @classmethod
    def success(cls, position: int, *, note: str | None = None, terminal: bool = False) -> "StepOutcome":
        return cls(kind=OutcomeKind.SUCCESS, position=position, note=note, terminal=terminal)

    @classmethod
    def needs_human(
        cls,
        position: int,
        action_required: ActionRequired,
        *,
        highlighted_selector: str | None = None,
    ) -> "StepOutcome":
        return cls(
            kind=OutcomeKind.NEEDS_HUMAN_ACTION,
            position=position,
            action_required=action_required,
            highlighted_selector=highlighted_selector,
        )

    @classmethod
    def failure(cls, position: int, error: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.FAILURE, position=position, error=error)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


# ---------------------------------------------------------------------------
# Per-broker outcome log and events
# ---------------------------------------------------------------------------


class BrokerOutcome(BaseModel):
    """Terminal outcome of one broker within a run."""

    broker_id: str
    broker_name: str
    success: bool
    last_step: str = ""
    failure_position: int | None = None
    error: str | None = None


class OptOutProgress(BaseModel):
    """Per-step progress notification."""

    run_id: str
    broker_id: str
    broker_name: str
    status: RunStatus
    current_step: str
    brokers_completed: int
    brokers_total: int
    action_required: ActionRequired | None = None
    error: str | None = None


class OptOutComplete(BaseModel):
    """Terminal run summary notification."""

    run_id: str
    total: int
    succeeded: int
    failed: int
    cancelled: bool = False
    outcomes: list[BrokerOutcome] = Field(default_factory=list)
