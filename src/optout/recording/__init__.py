"""Playbook authoring by demonstration.

* ``recorder``: ``ActionRecorder`` captures live interactions.
* ``converter``: ``actions_to_steps`` / ``RecordingDraft`` turn them into steps.
* ``scripts``: the in-page capture script.
"""

from optout.recording.converter import RecordingDraft, actions_to_steps, describe_action
from optout.recording.recorder import ActionRecorder

__all__ = ["ActionRecorder", "RecordingDraft", "actions_to_steps", "describe_action"]
