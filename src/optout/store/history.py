"""Submission history, persisted as ``{"records": [...]}``."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from optout.exceptions import StoreError
from optout.models.broker import SubmissionRecord
from optout.store.files import read_json, write_json

logger = logging.getLogger(__name__)


class HistoryStore:
    """File-backed log of opt-out submissions.

    Args:
        path: JSON file location. Defaults to ``storage.history_file``.
    """

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            from optout.settings import get_settings

            storage = get_settings().storage
            path = storage.path_for(storage.history_file)
        self.path = Path(path)

    def get_all(self) -> list[SubmissionRecord]:
        """Return every record in insertion order."""
        raw = read_json(self.path, default={"records": []})
        try:
            return [SubmissionRecord.model_validate(item) for item in raw.get("records", [])]
        except (AttributeError, ValidationError) as exc:
            raise StoreError(f"Invalid history file {self.path}: {exc}") from exc

    def upsert(self, record: SubmissionRecord) -> None:
        """Insert *record*, or replace the record with the same id."""
        records = self.get_all()
        for index, existing in enumerate(records):
            if existing.id == record.id:
                records[index] = record
                break
        else:
            records.append(record)
        write_json(self.path, {"records": [r.model_dump(mode="json") for r in records]})
        logger.debug("Recorded %s submission for broker %s", record.status.value, record.broker_id)

    def for_broker(self, broker_id: str) -> list[SubmissionRecord]:
        """Return every record for *broker_id*."""
        return [r for r in self.get_all() if r.broker_id == broker_id]

    def latest_per_broker(self) -> list[SubmissionRecord]:
        """Return the most recent record for each broker."""
        latest: dict[str, SubmissionRecord] = {}
        for record in self.get_all():
            current = latest.get(record.broker_id)
            if current is None or record.submitted_at > current.submitted_at:
                latest[record.broker_id] = record
        return list(latest.values())

    def due_for_recheck(self, now: datetime | None = None) -> list[SubmissionRecord]:
        """Return latest records whose ``next_check_date`` has passed."""
        now = now or datetime.now(timezone.utc)
        return [r for r in self.latest_per_broker() if r.next_check_date is not None and r.next_check_date <= now]
