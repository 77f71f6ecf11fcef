"""Opt-out execution engine.

* ``executor``: ``StepExecutor`` interprets one playbook step.
* ``resolver``: ``PlaybookResolver`` turns selections into verified playbooks.
* ``runner``: ``OptOutRun`` walks a broker worklist as a state machine.
* ``manager``: ``RunManager`` owns the single active run.
"""

from optout.engine.executor import StepExecutor
from optout.engine.manager import RunManager
from optout.engine.resolver import PlaybookResolver
from optout.engine.runner import OptOutRun

__all__ = ["OptOutRun", "PlaybookResolver", "RunManager", "StepExecutor"]
