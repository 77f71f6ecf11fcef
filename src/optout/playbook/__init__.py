"""Playbook safety and distribution: validation, signatures and the catalog.

Modules:

* ``validation``: ``validate_steps`` / ``validate_payload`` static safety checks.
* ``verification``: Ed25519 signature checks for community playbooks.
* ``catalog``: ``CatalogClient`` for the community playbook API.
"""

from optout.playbook.catalog import CatalogClient
from optout.playbook.validation import validate_payload, validate_steps
from optout.playbook.verification import verify_playbook_signature

__all__ = [
    "CatalogClient",
    "validate_payload",
    "validate_steps",
    "verify_playbook_signature",
]
