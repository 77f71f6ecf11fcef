"""Unit tests for optout.playbook.catalog: catalog API client."""

from __future__ import annotations

import base64
import json

import httpx
import pytest
from nacl.signing import SigningKey

from factories import make_steps
from optout.exceptions import CatalogError
from optout.models.playbook import PlaybookReport, PlaybookSubmission
from optout.playbook.catalog import CatalogClient, device_id, load_signing_key, sign_request
from optout.playbook.verification import canonical_steps_json
from optout.settings.config import CatalogSettings

API = "https://catalog.test/api/v1"
STEPS = make_steps({"action": "navigate", "value": "https://example.com/optout"}, {"action": "done"})


@pytest.fixture()
def signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture()
def settings(signing_key: SigningKey) -> CatalogSettings:
    return CatalogSettings(
        api_base=API,
        signing_key=base64.b64encode(bytes(signing_key)).decode(),
        playbook_public_key=base64.b64encode(bytes(signing_key.verify_key)).decode(),
    )


def _summary(signing_key: SigningKey, playbook_id: str, *, signed: bool = True) -> dict:
    item = {
        "id": playbook_id,
        "broker_id": "spokeo",
        "version": 2,
        "steps_count": len(STEPS),
        "steps": [s.model_dump(mode="json") for s in STEPS],
    }
    if signed:
        item["signature"] = base64.b64encode(signing_key.sign(canonical_steps_json(STEPS)).signature).decode()
    return item


def _client(settings: CatalogSettings, handler) -> CatalogClient:
    return CatalogClient(settings, transport=httpx.MockTransport(handler))


class TestHelpers:
    """Tests for device_id and key handling."""

    def test_device_id_is_stable_hash(self) -> None:
        assert device_id("host-a") == device_id("host-a")
        assert device_id("host-a") != device_id("host-b")
        assert len(device_id("host-a")) == 64

    def test_signing_key_accepts_64_byte_secret(self, signing_key: SigningKey) -> None:
        full = bytes(signing_key) + bytes(signing_key.verify_key)
        loaded = load_signing_key(base64.b64encode(full).decode())
        assert bytes(loaded) == bytes(signing_key)

    def test_signing_key_too_short(self) -> None:
        with pytest.raises(CatalogError, match="at least 32 bytes"):
            load_signing_key(base64.b64encode(b"short").decode())

    def test_signing_key_bad_base64(self) -> None:
        with pytest.raises(CatalogError, match="not valid base64"):
            load_signing_key("%%%")


class TestAuthentication:
    """Tests for request signing and sandbox auth."""

    @pytest.mark.anyio
    async def test_production_requests_are_signed(self, settings: CatalogSettings, signing_key: SigningKey) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        async with _client(settings, handler) as client:
            await client.fetch_playbooks("spokeo")

        request = seen[0]
        timestamp = int(request.headers["X-Timestamp"])
        path = request.url.raw_path.decode()
        assert path.startswith("/api/v1/playbooks?")
        expected = sign_request(signing_key, "GET", path, "", timestamp)
        assert request.headers["X-Signature"] == expected
        signing_key.verify_key.verify(
            f"{timestamp}\nGET\n{path}\n".encode(), base64.b64decode(request.headers["X-Signature"])
        )

    @pytest.mark.anyio
    async def test_sandbox_uses_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        settings = CatalogSettings(sandbox=True, sandbox_api_base=API, sandbox_token="tok-123")
        async with _client(settings, handler) as client:
            await client.fetch_playbooks("spokeo")

        assert seen[0].headers["Authorization"] == "Bearer tok-123"
        assert "X-Signature" not in seen[0].headers
        assert seen[0].url.host == "catalog.test"


class TestFetch:
    """Tests for the read endpoints."""

    @pytest.mark.anyio
    async def test_fetch_playbooks_drops_unverified(self, settings: CatalogSettings, signing_key: SigningKey) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["broker_id"] == "spokeo"
            assert request.url.params["limit"] == "10"
            items = [
                _summary(signing_key, "good"),
                _summary(signing_key, "unsigned", signed=False),
                {**_summary(signing_key, "forged"), "signature": base64.b64encode(b"\0" * 64).decode()},
            ]
            return httpx.Response(200, json={"data": items, "meta": {"total": 3}})

        async with _client(settings, handler) as client:
            summaries = await client.fetch_playbooks("spokeo")

        assert [s.id for s in summaries] == ["good"]
        assert "signature" not in summaries[0].model_dump()

    @pytest.mark.anyio
    async def test_fetch_best_playbook_fetches_detail(self, settings: CatalogSettings, signing_key: SigningKey) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/playbooks"):
                assert request.url.params["sort"] == "best"
                return httpx.Response(200, json={"data": [_summary(signing_key, "pb-9")]})
            return httpx.Response(200, json={"data": _summary(signing_key, "pb-9")})

        async with _client(settings, handler) as client:
            playbook = await client.fetch_best_playbook("spokeo")

        assert playbook is not None
        assert playbook.id == "pb-9"
        assert len(playbook.steps) == 2
        assert paths == ["/api/v1/playbooks", "/api/v1/playbooks/pb-9"]

    @pytest.mark.anyio
    async def test_fetch_best_playbook_none(self, settings: CatalogSettings) -> None:
        async with _client(settings, lambda r: httpx.Response(200, json={"data": []})) as client:
            assert await client.fetch_best_playbook("spokeo") is None

    @pytest.mark.anyio
    async def test_http_error_raises(self, settings: CatalogSettings) -> None:
        async with _client(settings, lambda r: httpx.Response(500, text="boom")) as client:
            with pytest.raises(CatalogError) as exc_info:
                await client.fetch_playbook("pb-1")
        assert exc_info.value.status_code == 500

    @pytest.mark.anyio
    async def test_missing_envelope_raises(self, settings: CatalogSettings) -> None:
        async with _client(settings, lambda r: httpx.Response(200, json=[1, 2])) as client:
            with pytest.raises(CatalogError, match="data envelope"):
                await client.fetch_playbooks("spokeo")

    @pytest.mark.anyio
    async def test_transport_error_raises(self, settings: CatalogSettings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(settings, handler) as client:
            with pytest.raises(CatalogError):
                await client.fetch_playbook("pb-1")


class TestWrites:
    """Tests for submit, vote and report."""

    @pytest.mark.anyio
    async def test_submit_playbook(self, settings: CatalogSettings) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"data": {"id": "pb-new", "status": "pending"}})

        submission = PlaybookSubmission(broker_id="spokeo", broker_name="Spokeo", steps=STEPS)
        async with _client(settings, handler) as client:
            result = await client.submit_playbook(submission)

        assert result.id == "pb-new"
        assert result.status == "pending"
        assert bodies[0]["broker_id"] == "spokeo"
        assert len(bodies[0]["steps"]) == 2

    @pytest.mark.anyio
    async def test_submit_html_response(self, settings: CatalogSettings) -> None:
        handler = lambda r: httpx.Response(200, text="<!doctype html><html></html>")  # noqa: E731
        submission = PlaybookSubmission(broker_id="spokeo", broker_name="Spokeo", steps=STEPS)
        async with _client(settings, handler) as client:
            with pytest.raises(CatalogError, match="HTML instead of JSON"):
                await client.submit_playbook(submission)

    @pytest.mark.anyio
    async def test_vote_rejects_unknown_direction(self, settings: CatalogSettings) -> None:
        async with _client(settings, lambda r: httpx.Response(200, json={"data": {}})) as client:
            with pytest.raises(ValueError):
                await client.vote("pb-1", "sideways")

    @pytest.mark.anyio
    async def test_report_outcome(self, settings: CatalogSettings) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/playbooks/pb-1/report"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {}})

        report = PlaybookReport(device_id="abc", outcome="failure", failure_step=3, app_version="0.1.0")
        async with _client(settings, handler) as client:
            await client.report_outcome("pb-1", report)

        assert bodies[0]["outcome"] == "failure"
        assert bodies[0]["failure_step"] == 3
