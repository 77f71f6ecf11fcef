"""Local persistence: JSON files for drafts, history, registry and profile."""

from optout.store.files import load_profile, load_registry
from optout.store.history import HistoryStore
from optout.store.local_playbooks import LocalPlaybookStore

__all__ = ["HistoryStore", "LocalPlaybookStore", "load_profile", "load_registry"]
