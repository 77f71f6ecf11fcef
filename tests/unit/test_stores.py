"""Unit tests for optout.store: JSON files, local drafts and history."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from factories import make_local
from optout.exceptions import PlaybookValidationError, StoreError
from optout.models.broker import Broker, SubmissionRecord, SubmissionStatus
from optout.store.files import load_profile, load_registry, read_json, write_json
from optout.store.history import HistoryStore
from optout.store.local_playbooks import LocalPlaybookStore


class TestJsonFiles:
    """Tests for read_json / write_json."""

    def test_missing_file_returns_default(self, tmp_path: Path) -> None:
        assert read_json(tmp_path / "nope.json", default={"x": 1}) == {"x": 1}

    def test_write_creates_parents_and_leaves_no_temp(self, tmp_path: Path) -> None:
        path = tmp_path / "a" / "b" / "data.json"
        write_json(path, {"k": "v"})
        assert json.loads(path.read_text()) == {"k": "v"}
        assert not (path.parent / "data.json.tmp").exists()

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(StoreError, match="Cannot read"):
            read_json(path)


class TestRegistryAndProfile:
    """Tests for load_registry / load_profile."""

    def test_registry_envelope(self, tmp_path: Path) -> None:
        path = tmp_path / "brokers.json"
        write_json(path, {"version": "3", "brokers": [{"id": "spokeo", "name": "Spokeo", "extra": 1}]})
        brokers = load_registry(path)
        assert [b.id for b in brokers] == ["spokeo"]

    def test_registry_bare_list(self, tmp_path: Path) -> None:
        path = tmp_path / "brokers.json"
        write_json(path, [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}])
        assert len(load_registry(path)) == 2

    def test_registry_missing_file(self, tmp_path: Path) -> None:
        assert load_registry(tmp_path / "brokers.json") == []

    def test_invalid_registry(self, tmp_path: Path) -> None:
        path = tmp_path / "brokers.json"
        write_json(path, [{"name": "no id"}])
        with pytest.raises(StoreError, match="1 error"):
            load_registry(path)

    def test_profile_camel_case(self, tmp_path: Path) -> None:
        path = tmp_path / "profile.json"
        write_json(path, {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"})
        profile = load_profile(path)
        assert profile.resolve("fullName") == "Jane Doe"
        assert profile.resolve("phone") is None

    def test_profile_errors_do_not_leak_values(self, tmp_path: Path) -> None:
        path = tmp_path / "profile.json"
        write_json(path, {"email": ["jane@example.com"]})
        with pytest.raises(StoreError) as exc_info:
            load_profile(path)
        assert "jane@example.com" not in str(exc_info.value)

    def test_profile_repr_is_redacted(self, profile) -> None:
        assert "Jane" not in repr(profile)


class TestLocalPlaybookStore:
    """Tests for LocalPlaybookStore."""

    def test_upsert_and_get(self, data_dir: Path) -> None:
        store = LocalPlaybookStore(data_dir / "local.json")
        saved = store.upsert(make_local("d1", "spokeo", {"action": "done"}))
        assert store.get("d1") == saved
        assert [p.id for p in store.get_all()] == ["d1"]

    def test_file_uses_camel_case(self, data_dir: Path) -> None:
        path = data_dir / "local.json"
        LocalPlaybookStore(path).upsert(make_local("d1", "spokeo", {"action": "done"}))
        raw = json.loads(path.read_text())
        assert raw["playbooks"][0]["brokerId"] == "spokeo"
        assert "updatedAt" in raw["playbooks"][0]

    def test_upsert_replaces_same_id(self, data_dir: Path) -> None:
        store = LocalPlaybookStore(data_dir / "local.json")
        store.upsert(make_local("d1", "spokeo", {"action": "done"}))
        store.upsert(make_local("d1", "spokeo", {"action": "wait"}, {"action": "done"}))
        assert len(store.get_all()) == 1
        assert len(store.get("d1").steps) == 2

    def test_invalid_draft_is_not_written(self, data_dir: Path) -> None:
        path = data_dir / "local.json"
        store = LocalPlaybookStore(path)
        with pytest.raises(PlaybookValidationError):
            store.upsert(make_local("bad", "spokeo", {"action": "navigate", "value": "javascript:alert(1)"}))
        assert not path.exists()

    def test_delete(self, data_dir: Path) -> None:
        store = LocalPlaybookStore(data_dir / "local.json")
        store.upsert(make_local("d1", "spokeo", {"action": "done"}))
        assert store.delete("d1") is True
        assert store.delete("d1") is False
        assert store.get_all() == []

    def test_to_playbook_is_local(self, data_dir: Path) -> None:
        store = LocalPlaybookStore(data_dir / "local.json")
        store.upsert(make_local("d1", "spokeo", {"action": "done"}))
        playbook = store.to_playbook("d1")
        assert playbook is not None
        assert playbook.is_local
        assert playbook.describe_source() == "local playbook"
        assert store.to_playbook("missing") is None


class TestHistoryStore:
    """Tests for HistoryStore."""

    def test_success_schedules_recheck(self, data_dir: Path) -> None:
        broker = Broker(id="spokeo", name="Spokeo", relist_days=30)
        record = SubmissionRecord.success(broker, "run1")
        assert record.status == SubmissionStatus.SUBMITTED
        assert record.next_check_date is not None
        assert record.next_check_date - record.submitted_at == timedelta(days=30)

    def test_verification_broker_is_pending(self) -> None:
        broker = Broker(id="x", name="X", requires_verification="email")
        assert SubmissionRecord.success(broker, "run1").status == SubmissionStatus.PENDING_VERIFICATION

    def test_round_trip_and_for_broker(self, data_dir: Path) -> None:
        store = HistoryStore(data_dir / "history.json")
        store.upsert(SubmissionRecord.failure("spokeo", "run1", "boom"))
        store.upsert(SubmissionRecord.failure("whitepages", "run1", "boom"))
        assert len(store.get_all()) == 2
        assert [r.broker_id for r in store.for_broker("spokeo")] == ["spokeo"]

    def test_latest_per_broker(self, data_dir: Path) -> None:
        store = HistoryStore(data_dir / "history.json")
        old = SubmissionRecord.failure("spokeo", "run1", "boom")
        old.submitted_at = datetime.now(timezone.utc) - timedelta(days=2)
        store.upsert(old)
        store.upsert(SubmissionRecord.success(Broker(id="spokeo", name="Spokeo"), "run2"))
        latest = store.latest_per_broker()
        assert len(latest) == 1
        assert latest[0].run_id == "run2"

    def test_due_for_recheck(self, data_dir: Path) -> None:
        store = HistoryStore(data_dir / "history.json")
        store.upsert(SubmissionRecord.success(Broker(id="spokeo", name="Spokeo", relist_days=30), "run1"))
        store.upsert(SubmissionRecord.success(Broker(id="radaris", name="Radaris"), "run1"))
        assert store.due_for_recheck() == []
        due = store.due_for_recheck(now=datetime.now(timezone.utc) + timedelta(days=31))
        assert [r.broker_id for r in due] == ["spokeo"]
