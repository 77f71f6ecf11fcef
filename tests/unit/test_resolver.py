"""Unit tests for optout.engine.resolver: selection to verified playbook."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest
from nacl.signing import SigningKey

from factories import make_local, make_steps
from optout.engine.resolver import PlaybookResolver
from optout.exceptions import PlaybookNotFoundError, PlaybookSignatureError
from optout.models.broker import Broker
from optout.models.playbook import Playbook
from optout.playbook.catalog import CatalogClient
from optout.playbook.verification import canonical_steps_json
from optout.store.local_playbooks import LocalPlaybookStore

STEPS = (
    {"action": "fill", "selector": "#email", "profile_key": "email"},
    {"action": "click", "selector": "#submit"},
)

SPOKEO = Broker(id="spokeo", name="Spokeo")


@pytest.fixture()
def signing_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture()
def public_key(signing_key: SigningKey) -> str:
    return base64.b64encode(bytes(signing_key.verify_key)).decode()


@pytest.fixture()
def community(signing_key: SigningKey) -> Playbook:
    steps = make_steps(*STEPS)
    signature = signing_key.sign(canonical_steps_json(steps)).signature
    return Playbook(id="pb-7", broker_id="spokeo", version=3, steps=steps, signature=base64.b64encode(signature).decode())


@pytest.fixture()
def catalog(community: Playbook) -> MagicMock:
    catalog = MagicMock(spec=CatalogClient)
    catalog.fetch_best_playbook = AsyncMock(return_value=community)
    catalog.fetch_playbook = AsyncMock(return_value=community)
    return catalog


@pytest.fixture()
def store(tmp_path) -> LocalPlaybookStore:
    return LocalPlaybookStore(tmp_path / "local_playbooks.json")


class TestLocalSelection:
    """Tests for local: selections."""

    @pytest.mark.anyio
    async def test_resolves_local_draft(self, store: LocalPlaybookStore) -> None:
        store.upsert(make_local("draft-1", "spokeo", *STEPS))
        playbook = await PlaybookResolver(store).resolve(SPOKEO, "local:draft-1")
        assert playbook.is_local
        assert playbook.describe_source() == "local playbook"
        assert len(playbook.steps) == 2

    @pytest.mark.anyio
    async def test_missing_local_draft(self, store: LocalPlaybookStore) -> None:
        with pytest.raises(PlaybookNotFoundError) as exc_info:
            await PlaybookResolver(store).resolve(SPOKEO, "local:draft-404")
        assert exc_info.value.broker_id == "spokeo"

    @pytest.mark.anyio
    @pytest.mark.parametrize("selection", ["", "   "])
    async def test_empty_selection(self, store: LocalPlaybookStore, selection: str) -> None:
        with pytest.raises(PlaybookNotFoundError):
            await PlaybookResolver(store).resolve(SPOKEO, selection)


class TestCommunitySelection:
    """Tests for best and explicit catalog selections."""

    @pytest.mark.anyio
    async def test_best_is_verified_and_cached(self, store, catalog, public_key) -> None:
        resolver = PlaybookResolver(store, catalog, public_key)

        first = await resolver.resolve(SPOKEO, "best")
        second = await resolver.resolve(SPOKEO, "best")

        assert first.id == second.id == "pb-7"
        assert first.describe_source() == "community playbook v3"
        catalog.fetch_best_playbook.assert_awaited_once_with("spokeo")

    @pytest.mark.anyio
    async def test_explicit_id_uses_cache_from_best(self, store, catalog, public_key) -> None:
        resolver = PlaybookResolver(store, catalog, public_key)
        await resolver.resolve(SPOKEO, "best")
        await resolver.resolve(SPOKEO, "pb-7")
        catalog.fetch_playbook.assert_not_awaited()

    @pytest.mark.anyio
    async def test_clear_cache(self, store, catalog, public_key) -> None:
        resolver = PlaybookResolver(store, catalog, public_key)
        await resolver.resolve(SPOKEO, "pb-7")
        resolver.clear_cache()
        await resolver.resolve(SPOKEO, "pb-7")
        assert catalog.fetch_playbook.await_count == 2

    @pytest.mark.anyio
    async def test_no_best_playbook(self, store, catalog, public_key) -> None:
        catalog.fetch_best_playbook.return_value = None
        with pytest.raises(PlaybookNotFoundError):
            await PlaybookResolver(store, catalog, public_key).resolve(SPOKEO, "best")

    @pytest.mark.anyio
    async def test_without_catalog(self, store) -> None:
        with pytest.raises(PlaybookNotFoundError):
            await PlaybookResolver(store).resolve(SPOKEO, "best")

    @pytest.mark.anyio
    async def test_bad_signature_is_not_cached(self, store, catalog, community, public_key) -> None:
        catalog.fetch_playbook.return_value = community.model_copy(
            update={"steps": make_steps({"action": "click", "selector": "#other"})}
        )
        resolver = PlaybookResolver(store, catalog, public_key)

        with pytest.raises(PlaybookSignatureError):
            await resolver.resolve(SPOKEO, "pb-7")
        with pytest.raises(PlaybookSignatureError):
            await resolver.resolve(SPOKEO, "pb-7")
        assert catalog.fetch_playbook.await_count == 2

    @pytest.mark.anyio
    async def test_unsigned_playbook(self, store, catalog, community, public_key) -> None:
        catalog.fetch_best_playbook.return_value = community.model_copy(update={"signature": None})
        with pytest.raises(PlaybookSignatureError):
            await PlaybookResolver(store, catalog, public_key).resolve(SPOKEO, "best")
