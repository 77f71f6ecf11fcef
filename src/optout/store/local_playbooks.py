"""Local playbook drafts, persisted as ``{"playbooks": [...]}`` (camelCase)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from optout.exceptions import StoreError
from optout.models.playbook import LocalPlaybook, Playbook
from optout.playbook.validation import validate_steps
from optout.store.files import read_json, write_json

logger = logging.getLogger(__name__)


class LocalPlaybookStore:
    """File-backed store of user-authored playbook drafts.

    Args:
        path: JSON file location. Defaults to ``storage.local_playbooks_file``.
    """

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            from optout.settings import get_settings

            storage = get_settings().storage
            path = storage.path_for(storage.local_playbooks_file)
        self.path = Path(path)

    def get_all(self) -> list[LocalPlaybook]:
        """Return every saved draft in insertion order."""
        raw = read_json(self.path, default={"playbooks": []})
        try:
            return [LocalPlaybook.model_validate(item) for item in raw.get("playbooks", [])]
        except (AttributeError, ValidationError) as exc:
            raise StoreError(f"Invalid local playbook file {self.path}: {exc}") from exc

    def get(self, playbook_id: str) -> LocalPlaybook | None:
        """Return the draft with *playbook_id*, or ``None``."""
        return next((p for p in self.get_all() if p.id == playbook_id), None)

    def upsert(self, playbook: LocalPlaybook) -> LocalPlaybook:
        """Validate and save *playbook*, replacing any draft with the same id.

        Raises:
            PlaybookValidationError: If the steps fail validation; nothing is written.
        """
        validate_steps(playbook.steps)
        stored = playbook.model_copy(update={"updated_at": datetime.now(timezone.utc).isoformat()})
        playbooks = self.get_all()
        for index, existing in enumerate(playbooks):
            if existing.id == stored.id:
                playbooks[index] = stored
                break
        else:
            playbooks.append(stored)
        self._save(playbooks)
        logger.info("Saved local playbook %s (%d steps)", stored.id, len(stored.steps))
        return stored

    def delete(self, playbook_id: str) -> bool:
        """Delete a draft. Returns whether anything was removed."""
        playbooks = self.get_all()
        remaining = [p for p in playbooks if p.id != playbook_id]
        if len(remaining) == len(playbooks):
            return False
        self._save(remaining)
        logger.info("Deleted local playbook %s", playbook_id)
        return True

    def to_playbook(self, playbook_id: str) -> Playbook | None:
        """Return the draft as an executable ``Playbook`` (status ``local``), or ``None``."""
        local = self.get(playbook_id)
        return local.to_playbook() if local else None

    def _save(self, playbooks: list[LocalPlaybook]) -> None:
        write_json(self.path, {"playbooks": [p.model_dump(mode="json", by_alias=True) for p in playbooks]})
