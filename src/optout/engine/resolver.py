"""Resolve a broker's playbook selection to a verified, validated playbook.

Selections:

* ``"local:<id>"``: a local draft from ``LocalPlaybookStore``.
* ``"best"``: the catalog's highest-ranked playbook for the broker.
* anything else: a specific catalog playbook id.

Community playbooks must pass signature verification; every playbook must
pass the step validator. Verified catalog playbooks are cached in-process
for the resolver's lifetime.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from optout.exceptions import PlaybookNotFoundError
from optout.models.broker import Broker
from optout.models.playbook import BEST_SELECTION, LOCAL_SELECTION_PREFIX, Playbook
from optout.playbook.validation import validate_steps
from optout.playbook.verification import verify_playbook_signature

if TYPE_CHECKING:
    from optout.playbook.catalog import CatalogClient
    from optout.store.local_playbooks import LocalPlaybookStore

logger = logging.getLogger(__name__)


class PlaybookResolver:
    """Turns playbook selections into executable playbooks.

    Args:
        local_store: Store for ``local:`` selections.
        catalog: Catalog client for community selections (``None`` disables them).
        public_key: Base64 Ed25519 key community playbooks are verified against.
    """

    def __init__(
        self,
        local_store: LocalPlaybookStore,
        catalog: CatalogClient | None = None,
        public_key: str = "",
    ) -> None:
        self._local_store = local_store
        self._catalog = catalog
        self._public_key = public_key
        self._cache: dict[str, Playbook] = {}
        self._best: dict[str, str] = {}

    async def resolve(self, broker: Broker, selection: str) -> Playbook:
        """Return the playbook *selection* names for *broker*.

        Raises:
            PlaybookNotFoundError: Nothing matches the selection.
            PlaybookSignatureError: A community playbook fails verification.
            PlaybookValidationError: The steps fail validation.
            CatalogError: The catalog request failed.
        """
        selection = (selection or "").strip()
        if not selection:
            raise PlaybookNotFoundError(selection, broker.id)

        if selection.startswith(LOCAL_SELECTION_PREFIX):
            playbook = self._local_store.to_playbook(selection[len(LOCAL_SELECTION_PREFIX):])
            if playbook is None:
                raise PlaybookNotFoundError(selection, broker.id)
        else:
            playbook = await self._community(broker, selection)

        validate_steps(playbook.steps)
        logger.info(
            "Resolved %s for broker %s to %s (%d steps)", selection, broker.id, playbook.id, len(playbook.steps)
        )
        return playbook

    def clear_cache(self) -> None:
        """Forget every cached catalog playbook."""
        self._cache.clear()
        self._best.clear()

    async def _community(self, broker: Broker, selection: str) -> Playbook:
        cached_id = self._best.get(broker.id) if selection == BEST_SELECTION else selection
        if cached_id and cached_id in self._cache:
            return self._cache[cached_id]

        if self._catalog is None:
            raise PlaybookNotFoundError(selection, broker.id)

        if selection == BEST_SELECTION:
            playbook = await self._catalog.fetch_best_playbook(broker.id)
            if playbook is None:
                raise PlaybookNotFoundError(selection, broker.id)
        else:
            playbook = await self._catalog.fetch_playbook(selection)

        verify_playbook_signature(playbook, self._public_key)
        self._cache[playbook.id] = playbook
        if selection == BEST_SELECTION:
            self._best[broker.id] = playbook.id
        return playbook
