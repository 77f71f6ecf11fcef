"""Tests for the FastAPI surface (via fastapi.testclient.TestClient)."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from factories import fake_session, make_local, session_factory_for
from optout.api.app import create_app
from optout.service import OptOutService
from optout.settings.config import Settings
from optout.store.history import HistoryStore
from optout.store.local_playbooks import LocalPlaybookStore

PROMPT = {"action": "user_prompt", "description": "Confirm the listing", "wait_after_ms": 0}
DONE = {"action": "done", "wait_after_ms": 0}
OPT_OUT_URL = "https://www.spokeo.com/optout"


@pytest.fixture()
def service(tmp_path, brokers, profile, engine_settings) -> OptOutService:
    settings = Settings()
    settings.engine = engine_settings
    store = LocalPlaybookStore(tmp_path / "local_playbooks.json")
    store.upsert(make_local("pb-prompt", "spokeo", PROMPT, DONE))
    return OptOutService(
        settings,
        brokers=lambda: brokers,
        profile_provider=lambda: profile,
        local_store=store,
        history=HistoryStore(tmp_path / "history.json"),
        session_factory=session_factory_for(fake_session()),
        launcher=AsyncMock(side_effect=lambda: fake_session()),
        chrome_locator=lambda: None,
    )


@pytest.fixture()
def client(service: OptOutService):
    with TestClient(create_app(service)) as client:
        yield client


def _wait_for_status(client: TestClient, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/runs/status").json()
        if body["status"] == status or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


class TestGeneralRoutes:
    """Tests for /health, /chrome and /brokers."""

    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_chrome_status(self, client: TestClient) -> None:
        assert client.get("/chrome").json() == {"installed": False}

    def test_brokers(self, client: TestClient) -> None:
        ids = [b["id"] for b in client.get("/brokers").json()]
        assert ids == ["spokeo", "whitepages"]


class TestRunRoutes:
    """Tests for /runs."""

    def test_idle_status(self, client: TestClient) -> None:
        assert client.get("/runs/status").json()["status"] == "idle"

    def test_run_with_prompt(self, client: TestClient) -> None:
        resp = client.post(
            "/runs", json={"broker_ids": ["spokeo"], "playbook_selections": {"spokeo": "local:pb-prompt"}}
        )
        assert resp.status_code == 202
        run_id = resp.json()["run_id"]

        waiting = _wait_for_status(client, "waiting_for_user")
        assert waiting["run_id"] == run_id
        assert waiting["pending_action"]["type"] == "user_prompt"
        assert waiting["pending_action"]["message"] == "Confirm the listing"

        assert client.post("/runs/continue").status_code == 200
        done = _wait_for_status(client, "completed")
        assert done["outcomes"][0]["success"] is True

    def test_second_run_conflicts(self, client: TestClient) -> None:
        body = {"broker_ids": ["spokeo"], "playbook_selections": {"spokeo": "local:pb-prompt"}}
        client.post("/runs", json=body)
        _wait_for_status(client, "waiting_for_user")

        assert client.post("/runs", json=body).status_code == 409

        cancelled = client.post("/runs/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "failed"

    def test_unknown_broker(self, client: TestClient) -> None:
        resp = client.post("/runs", json={"broker_ids": ["nope"]})
        assert resp.status_code == 422

    def test_empty_broker_list(self, client: TestClient) -> None:
        assert client.post("/runs", json={"broker_ids": []}).status_code == 422

    def test_continue_without_run(self, client: TestClient) -> None:
        assert client.post("/runs/continue", json={"response": "retry"}).status_code == 404

    def test_continue_rejects_unknown_response(self, client: TestClient) -> None:
        assert client.post("/runs/continue", json={"response": "later"}).status_code == 422

    def test_cancel_without_run(self, client: TestClient) -> None:
        assert client.post("/runs/cancel").status_code == 404


class TestRecordingRoutes:
    """Tests for /recording."""

    def test_record_flow(self, client: TestClient) -> None:
        resp = client.post("/recording/start", json={"broker_id": "spokeo", "broker_name": "Spokeo", "url": OPT_OUT_URL})
        assert resp.status_code == 201

        actions = client.get("/recording/actions").json()
        assert actions["steps"][0]["action"] == "navigate"
        assert actions["steps"][0]["value"] == OPT_OUT_URL

        assert client.post("/recording/captcha").status_code == 204
        assert client.post("/recording/user-prompt").status_code == 204

        stopped = client.post("/recording/stop").json()
        assert [s["action"] for s in stopped["steps"]] == ["navigate", "captcha", "user_prompt"]
        assert [s["position"] for s in stopped["steps"]] == [1, 2, 3]

    def test_start_twice_conflicts(self, client: TestClient) -> None:
        body = {"broker_id": "spokeo", "url": OPT_OUT_URL}
        client.post("/recording/start", json=body)
        assert client.post("/recording/start", json=body).status_code == 409
        client.post("/recording/stop")

    def test_commands_without_recording(self, client: TestClient) -> None:
        assert client.get("/recording/actions").status_code == 404
        assert client.post("/recording/captcha").status_code == 404
        assert client.post("/recording/stop").status_code == 404


class TestPlaybookRoutes:
    """Tests for /playbooks."""

    def _draft(self, playbook_id: str = "draft-1", **overrides) -> dict:
        body = {
            "id": playbook_id,
            "brokerId": "spokeo",
            "brokerName": "Spokeo",
            "steps": [
                {"position": 1, "action": "fill", "selector": "#email", "profile_key": "email"},
                {"position": 2, "action": "click", "selector": "#submit"},
            ],
        }
        body.update(overrides)
        return body

    def test_crud(self, client: TestClient) -> None:
        saved = client.put("/playbooks/local/draft-1", json=self._draft())
        assert saved.status_code == 200
        assert saved.json()["brokerId"] == "spokeo"

        assert client.get("/playbooks/local/draft-1").json()["id"] == "draft-1"
        ids = [p["id"] for p in client.get("/playbooks/local").json()]
        assert ids == ["pb-prompt", "draft-1"]

        assert client.delete("/playbooks/local/draft-1").status_code == 204
        assert client.get("/playbooks/local/draft-1").status_code == 404
        assert client.delete("/playbooks/local/draft-1").status_code == 404

    def test_id_mismatch(self, client: TestClient) -> None:
        assert client.put("/playbooks/local/other", json=self._draft()).status_code == 400

    def test_invalid_steps_are_not_saved(self, client: TestClient) -> None:
        bad = self._draft(steps=[{"position": 1, "action": "navigate", "value": "file:///etc/passwd"}])
        resp = client.put("/playbooks/local/draft-1", json=bad)
        assert resp.status_code == 422
        assert resp.json()["detail"]["problems"]
        assert client.get("/playbooks/local/draft-1").status_code == 404

    def test_validate(self, client: TestClient) -> None:
        ok = client.post("/playbooks/validate", json={"steps": self._draft()["steps"]}).json()
        assert ok["valid"] is True
        assert len(ok["steps"]) == 2

        bad = client.post("/playbooks/validate", json={"steps": [{"position": 1, "action": "teleport"}]}).json()
        assert bad["valid"] is False
        assert bad["problems"][0].startswith("Step 1: action")

    def test_community_without_catalog(self, client: TestClient) -> None:
        assert client.get("/playbooks/community/spokeo").status_code == 503


class TestEventStream:
    """Tests for /ws/events."""

    def test_snapshot_then_events(self, client: TestClient, service: OptOutService) -> None:
        with client.websocket_connect("/ws/events") as ws:
            snapshot = ws.receive_json()
            assert snapshot["type"] == "snapshot"
            assert snapshot["data"]["status"] == "idle"
            assert snapshot["data"]["recording"] is False

            client.post("/recording/start", json={"broker_id": "spokeo", "url": OPT_OUT_URL})
            event = ws.receive_json()
            assert event["event_type"] == "recording_started"
            assert event["data"]["broker_id"] == "spokeo"

            ws.send_text("ping")
            assert ws.receive_text() == "pong"

        client.post("/recording/stop")
        assert service.bus.sink_count == 1
