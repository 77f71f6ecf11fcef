"""Playbook data models: ordered browser steps describing one broker's opt-out flow.

A playbook never stores a person's data. Steps that need user data carry a
``profile_key`` (e.g. ``email``) which the executor resolves against the
profile snapshot at run time.

Two provenances share the ``Playbook`` shape:

* **Community** playbooks come from the catalog API, are immutable once
  accepted and must carry a valid Ed25519 ``signature``.
* **Local** drafts (``status == "local"``) come from the recorder or manual
  editing and stay mutable until submitted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

LOCAL_STATUS = "local"
LOCAL_SELECTION_PREFIX = "local:"
BEST_SELECTION = "best"
DEFAULT_WAIT_AFTER_MS = 500


class ActionKind(str, Enum):
    """Closed set of actions a playbook step can perform."""

    NAVIGATE = "navigate"
    FILL = "fill"
    SELECT = "select"
    CHECK = "check"
    CLICK = "click"
    WAIT = "wait"
    WAIT_FOR = "wait_for"
    SCROLL_TO = "scroll_to"
    FIND_AND_CLICK = "find_and_click"
    CAPTCHA = "captcha"
    USER_PROMPT = "user_prompt"
    DONE = "done"


# Actions that operate on an element and therefore need a selector.
SELECTOR_ACTIONS = frozenset(
    {
        ActionKind.FILL,
        ActionKind.SELECT,
        ActionKind.CHECK,
        ActionKind.CLICK,
        ActionKind.WAIT_FOR,
        ActionKind.SCROLL_TO,
        ActionKind.FIND_AND_CLICK,
    }
)


class ProfileKey(str, Enum):
    """Symbolic references to profile fields a step may fill in."""

    FIRST_NAME = "firstName"
    LAST_NAME = "lastName"
    FULL_NAME = "fullName"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    ZIP = "zip"
    DOB = "dob"


class PlaybookStep(BaseModel):
    """Single step in a playbook.

    ``position`` is 1-based and dense within a playbook; the validator
    enforces that along with the per-action field requirements.
    """

    position: int = Field(..., ge=1)
    action: ActionKind
    selector: str | None = None
    profile_key: ProfileKey | None = None
    value: str | None = None
    description: str = ""
    instructions: str | None = None
    wait_after_ms: int = Field(default=DEFAULT_WAIT_AFTER_MS, ge=0)
    optional: bool = False

    def label(self) -> str:
        """Short log-safe label: ``#3 fill``."""
        return f"#{self.position} {self.action.value}"


class Playbook(BaseModel):
    """Full playbook with steps, as returned by ``GET /playbooks/{id}``."""

    id: str
    broker_id: str
    broker_name: str = ""
    title: str | None = None
    version: int = 0
    status: str = "approved"
    notes: str | None = None
    steps: list[PlaybookStep] = Field(default_factory=list)
    signature: str | None = None
    upvotes: int = 0
    downvotes: int = 0
    success_count: int = 0
    failure_count: int = 0
    created_at: str = ""

    @property
    def is_local(self) -> bool:
        """Whether this is a local draft rather than a community playbook."""
        return self.status == LOCAL_STATUS

    def ordered_steps(self) -> list[PlaybookStep]:
        """Return steps sorted by ``position``."""
        return sorted(self.steps, key=lambda s: s.position)

    def describe_source(self) -> str:
        """Human-readable source label used in progress messages."""
        if self.is_local:
            return "local playbook"
        return f"community playbook v{self.version}"


class PlaybookSummary(BaseModel):
    """Catalog list entry.

    The API includes ``steps`` and ``signature`` so the client can verify
    each entry; both are excluded when the summary is serialized onward.
    """

    id: str
    broker_id: str
    broker_name: str = ""
    title: str | None = None
    version: int = 0
    notes: str | None = None
    steps_count: int = 0
    upvotes: int = 0
    downvotes: int = 0
    success_count: int = 0
    failure_count: int = 0
    score: int = 0
    created_at: str = ""
    signature: str | None = Field(default=None, exclude=True)
    steps: list[PlaybookStep] = Field(default_factory=list, exclude=True)

    def as_playbook(self) -> Playbook:
        """Build a ``Playbook`` view of this summary for signature checks."""
        return Playbook(
            id=self.id,
            broker_id=self.broker_id,
            broker_name=self.broker_name,
            title=self.title,
            version=self.version,
            notes=self.notes,
            steps=self.steps,
            signature=self.signature,
            created_at=self.created_at,
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalPlaybook(BaseModel):
    """A locally saved playbook draft (camelCase on disk)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    broker_id: str = Field(..., alias="brokerId")
    broker_name: str = Field(default="", alias="brokerName")
    title: str | None = None
    notes: str | None = None
    steps: list[PlaybookStep] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=_now_iso, alias="updatedAt")
    submitted_at: str | None = Field(default=None, alias="submittedAt")

    def to_playbook(self) -> Playbook:
        """Return an executable ``Playbook`` marked as local."""
        return Playbook(
            id=self.id,
            broker_id=self.broker_id,
            broker_name=self.broker_name,
            title=self.title,
            version=0,
            status=LOCAL_STATUS,
            notes=self.notes,
            steps=self.steps,
            created_at=self.created_at,
        )


class PlaybookSubmission(BaseModel):
    """Payload for ``POST /playbooks``."""

    broker_id: str
    broker_name: str
    title: str | None = None
    notes: str | None = None
    steps: list[PlaybookStep]


class PlaybookSubmitResponse(BaseModel):
    """Response data from ``POST /playbooks``."""

    id: str
    status: str
    message: str = ""


class PlaybookReport(BaseModel):
    """Anonymous execution outcome reported for a community playbook."""

    device_id: str
    outcome: str  # success | failure
    failure_step: int | None = None
    error_message: str | None = None
    app_version: str
