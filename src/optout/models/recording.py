"""Raw capture records produced by the action recorder."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

from optout.models.playbook import ActionKind, ProfileKey


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordedAction(BaseModel):
    """One user interaction captured during recording.

    Text inputs never carry a ``value``; fields recognised as personal data
    carry only a ``profile_key`` guess.
    """

    model_config = ConfigDict(extra="ignore")

    action: ActionKind
    selector: str | None = None
    profile_key: ProfileKey | None = None
    value: str | None = None
    url: str | None = None
    element_text: str | None = None
    label: str | None = None
    timestamp: int = Field(default_factory=_now_ms)

    @classmethod
    def navigation(cls, url: str) -> "RecordedAction":
        return cls(action=ActionKind.NAVIGATE, value=url, url=url)

    @classmethod
    def captcha_marker(cls) -> "RecordedAction":
        return cls(action=ActionKind.CAPTCHA, label="User solved CAPTCHA")

    @classmethod
    def user_prompt_marker(cls) -> "RecordedAction":
        return cls(action=ActionKind.USER_PROMPT, label="Manual step")
