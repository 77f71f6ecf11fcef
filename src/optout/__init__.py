"""optout: opt-out playbook execution engine and recorder for data-broker removal."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("optout")
except Exception:
    __version__ = "0.0.0"
