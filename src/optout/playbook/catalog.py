"""Community playbook catalog API client.

Every response is wrapped in a ``{"data": ..., "meta": ...}`` envelope.
Requests are authenticated one of two ways:

* **Sandbox**: ``Authorization: Bearer <sandbox_token>``.
* **Production**: an Ed25519 signature over
  ``"{timestamp}\\n{METHOD}\\n{path?query}\\n{body}"`` sent as ``X-Signature``
  (base64) with ``X-Timestamp`` (epoch seconds).

Community playbooks returned by list endpoints are only surfaced if their
step signature verifies; see ``optout.playbook.verification``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import socket
import time
from typing import Any

import httpx
from nacl.signing import SigningKey
from pydantic import ValidationError

from optout.exceptions import CatalogError, PlaybookSignatureError
from optout.models.playbook import (
    Playbook,
    PlaybookReport,
    PlaybookSubmission,
    PlaybookSubmitResponse,
    PlaybookSummary,
)
from optout.playbook.verification import verify_playbook_signature
from optout.settings.config import CatalogSettings

logger = logging.getLogger(__name__)

DEVICE_ID_SALT = "opt-outta-device-salt-v1"
_SEED_LENGTH = 32


def device_id(hostname: str | None = None) -> str:
    """Return the anonymous device identifier (sha256 of hostname + salt)."""
    if hostname is None:
        try:
            hostname = socket.gethostname()
        except OSError:
            hostname = "unknown"
    digest = hashlib.sha256()
    digest.update(hostname.encode("utf-8"))
    digest.update(DEVICE_ID_SALT.encode("utf-8"))
    return digest.hexdigest()


def load_signing_key(key_b64: str) -> SigningKey:
    """Decode a base64 Ed25519 signing key.

    Accepts a 32-byte seed or a 64-byte libsodium secret key (seed followed
    by the public key); only the seed is used.

    Raises:
        CatalogError: If the key is not valid base64 or is too short.
    """
    try:
        raw = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CatalogError("signing", detail=f"signing key is not valid base64: {exc}") from exc
    if len(raw) < _SEED_LENGTH:
        raise CatalogError("signing", detail=f"signing key must be at least {_SEED_LENGTH} bytes")
    return SigningKey(raw[:_SEED_LENGTH])


def sign_request(signing_key: SigningKey, method: str, path: str, body: str, timestamp: int) -> str:
    """Return the base64 signature for one request."""
    message = f"{timestamp}\n{method}\n{path}\n{body}"
    return base64.b64encode(signing_key.sign(message.encode("utf-8")).signature).decode("ascii")


class CatalogClient:
    """Async client for the playbook catalog.

    Args:
        settings: Catalog configuration. Defaults to ``get_settings().catalog``.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: CatalogSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if settings is None:
            from optout.settings import get_settings

            settings = get_settings().catalog

        self._settings = settings
        self._signing_key = (
            load_signing_key(settings.signing_key) if settings.signing_key and not settings.sandbox else None
        )
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=settings.timeout_sec,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def fetch_best_playbook(self, broker_id: str) -> Playbook | None:
        """Return the highest-ranked playbook for *broker_id*, with steps, or ``None``."""
        data = await self._get_data(
            "best playbook", "/playbooks", params={"broker_id": broker_id, "sort": "best", "limit": 1}
        )
        summaries = self._parse_list("best playbook", data)
        if not summaries:
            logger.info("No community playbook for broker %s", broker_id)
            return None
        return await self.fetch_playbook(summaries[0].id)

    async def fetch_playbook(self, playbook_id: str) -> Playbook:
        """Fetch one playbook with all of its steps."""
        data = await self._get_data("playbook detail", f"/playbooks/{playbook_id}")
        try:
            return Playbook.model_validate(data)
        except ValidationError as exc:
            raise CatalogError("playbook detail", detail=f"malformed playbook: {exc}") from exc

    async def fetch_playbooks(self, broker_id: str) -> list[PlaybookSummary]:
        """List playbooks for *broker_id*, keeping only entries whose signature verifies."""
        data = await self._get_data(
            "playbook list",
            "/playbooks",
            params={"broker_id": broker_id, "sort": "best", "limit": self._settings.list_limit},
        )
        verified: list[PlaybookSummary] = []
        for summary in self._parse_list("playbook list", data):
            if not summary.steps or not summary.signature:
                logger.debug("Dropping unsigned playbook %s from list", summary.id)
                continue
            try:
                verify_playbook_signature(summary.as_playbook(), self._settings.playbook_public_key)
            except PlaybookSignatureError as exc:
                logger.warning("Dropping playbook %s: %s", summary.id, exc)
                continue
            verified.append(summary)
        return verified

    async def submit_playbook(self, submission: PlaybookSubmission) -> PlaybookSubmitResponse:
        """Submit a recorded playbook for review."""
        response = await self._send("POST", "/playbooks", body=submission.model_dump(mode="json"))
        text = response.text
        if response.is_error:
            raise CatalogError("submit", response.status_code, text)
        if text.lstrip().startswith("<"):
            raise CatalogError(
                "submit",
                response.status_code,
                "Server returned HTML instead of JSON; the submit endpoint may not be deployed yet.",
            )
        data = self._unwrap("submit", text)
        try:
            return PlaybookSubmitResponse.model_validate(data)
        except ValidationError as exc:
            raise CatalogError("submit", detail=f"malformed submit response: {exc}") from exc

    async def vote(self, playbook_id: str, vote: str) -> None:
        """Cast an ``"up"`` or ``"down"`` vote for a playbook."""
        if vote not in ("up", "down"):
            raise ValueError(f"vote must be 'up' or 'down', got {vote!r}")
        response = await self._send(
            "POST", f"/playbooks/{playbook_id}/vote", body={"device_id": device_id(), "vote": vote}
        )
        if response.is_error:
            raise CatalogError("vote", response.status_code, response.text)

    async def report_outcome(self, playbook_id: str, report: PlaybookReport) -> None:
        """Report an anonymous execution outcome for a community playbook."""
        response = await self._send(
            "POST", f"/playbooks/{playbook_id}/report", body=report.model_dump(mode="json")
        )
        if response.is_error:
            raise CatalogError("report", response.status_code, response.text)

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        content = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = {"Content-Type": "application/json"} if body is not None else {}
        request = self._client.build_request(
            method, path, params=params, content=content.encode("utf-8") or None, headers=headers
        )
        self._authenticate(request, content)
        try:
            return await self._client.send(request)
        except httpx.HTTPError as exc:
            raise CatalogError(f"{method} {path}", detail=str(exc)) from exc

    def _authenticate(self, request: httpx.Request, body: str) -> None:
        if self._settings.sandbox:
            if self._settings.sandbox_token:
                request.headers["Authorization"] = f"Bearer {self._settings.sandbox_token}"
            return
        if self._signing_key is None:
            return
        timestamp = int(time.time())
        path = request.url.raw_path.decode("ascii")
        request.headers["X-Signature"] = sign_request(self._signing_key, request.method, path, body, timestamp)
        request.headers["X-Timestamp"] = str(timestamp)

    async def _get_data(self, operation: str, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._send("GET", path, params=params)
        if response.is_error:
            raise CatalogError(operation, response.status_code, response.text)
        return self._unwrap(operation, response.text)

    @staticmethod
    def _unwrap(operation: str, text: str) -> Any:
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CatalogError(operation, detail=f"response is not JSON: {exc}") from exc
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise CatalogError(operation, detail="response is missing the data envelope")
        return envelope["data"]

    @staticmethod
    def _parse_list(operation: str, data: Any) -> list[PlaybookSummary]:
        if not isinstance(data, list):
            raise CatalogError(operation, detail="expected a list of playbooks")
        try:
            return [PlaybookSummary.model_validate(item) for item in data]
        except ValidationError as exc:
            raise CatalogError(operation, detail=f"malformed playbook summary: {exc}") from exc
