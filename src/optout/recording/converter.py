"""Turn recorded actions into playbook steps.

``actions_to_steps`` converts a whole log in one pass. ``RecordingDraft``
does the same incrementally: because the recorder's log is append-only,
the draft only needs to remember how many actions it has already seen.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from optout.models.playbook import DEFAULT_WAIT_AFTER_MS, ActionKind, LocalPlaybook, PlaybookStep
from optout.models.recording import RecordedAction
from optout.playbook.validation import MAX_DESCRIPTION_LENGTH, PII_PATTERNS


def _looks_personal(text: str) -> bool:
    return any(pattern.search(text) for _, pattern in PII_PATTERNS)


def _safe(text: str | None, fallback: str) -> str:
    """Return *text* unless it is empty or looks like personal data."""
    if not text or _looks_personal(text):
        return fallback
    return text


def describe_action(action: RecordedAction) -> str:
    """Return the human-readable step description for *action*."""
    target = _safe(action.label, action.selector or "field")
    key = action.profile_key.value if action.profile_key else None

    if action.action == ActionKind.NAVIGATE:
        description = f"Go to {action.url or action.value or ''}".rstrip()
    elif action.action == ActionKind.FILL:
        description = f"Enter {key or _safe(action.label, 'text')} in {target}"
    elif action.action == ActionKind.SELECT:
        description = f"Select {key or _safe(action.value, 'option')} in {target}"
    elif action.action == ActionKind.CHECK:
        description = f"Toggle checkbox {target}"
    elif action.action == ActionKind.CLICK:
        text = _safe(action.element_text, "")
        description = f'Click "{text}"' if text else f"Click {action.selector or 'element'}"
    elif action.action == ActionKind.CAPTCHA:
        description = "Solve CAPTCHA"
    elif action.action == ActionKind.USER_PROMPT:
        description = "Manual step"
    else:
        description = action.action.value.replace("_", " ").capitalize()
    return description[:MAX_DESCRIPTION_LENGTH]


def action_to_step(action: RecordedAction, position: int) -> PlaybookStep:
    """Convert one recorded action to the step at *position*."""
    if action.action == ActionKind.NAVIGATE:
        value = action.url or action.value
    elif action.action in (ActionKind.SELECT, ActionKind.CHECK):
        value = action.value
    else:
        value = None
    return PlaybookStep(
        position=position,
        action=action.action,
        selector=action.selector,
        profile_key=action.profile_key,
        value=value,
        description=describe_action(action),
        wait_after_ms=DEFAULT_WAIT_AFTER_MS,
    )


def actions_to_steps(actions: Sequence[RecordedAction]) -> list[PlaybookStep]:
    """Convert a full action log to steps numbered from 1."""
    return [action_to_step(action, index) for index, action in enumerate(actions, start=1)]


class RecordingDraft:
    """Incrementally built playbook draft for an in-progress recording.

    Args:
        broker_id: Broker the recording is for.
        broker_name: Display name of the broker.
        draft_id: Local playbook id (generated when omitted).
    """

    def __init__(self, broker_id: str, broker_name: str = "", draft_id: str | None = None) -> None:
        self.id = draft_id or f"rec-{uuid.uuid4().hex[:12]}"
        self.broker_id = broker_id
        self.broker_name = broker_name
        self.steps: list[PlaybookStep] = []
        self.seen_count = 0

    def sync(self, actions: Sequence[RecordedAction]) -> list[PlaybookStep]:
        """Append steps for actions not seen yet and return them.

        Polling with the same (or a shorter) snapshot is a no-op.
        """
        added = [
            action_to_step(action, len(self.steps) + offset)
            for offset, action in enumerate(actions[self.seen_count:], start=1)
        ]
        self.steps.extend(added)
        self.seen_count = max(self.seen_count, len(actions))
        return added

    def to_local_playbook(self, title: str | None = None, notes: str | None = None) -> LocalPlaybook:
        """Return the draft as a ``LocalPlaybook`` ready to save."""
        return LocalPlaybook(
            id=self.id,
            broker_id=self.broker_id,
            broker_name=self.broker_name,
            title=title or f"Recorded flow for {self.broker_name or self.broker_id}",
            notes=notes,
            steps=list(self.steps),
        )
