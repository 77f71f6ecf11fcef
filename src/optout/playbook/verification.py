"""Ed25519 signature verification for community playbooks.

The catalog signs the canonical JSON form of a playbook's steps once a
playbook is accepted. The client refuses to run (or list) a community
playbook whose signature does not verify against the configured public key.

Canonical form: steps sorted by ``position``; each step an object with keys
``action, description, optional, position, profile_key, selector, value,
wait_after_ms`` in that (alphabetical) order, ``wait_after_ms`` always
``null``; compact separators; UTF-8.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Sequence

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from optout.exceptions import PlaybookSignatureError
from optout.models.playbook import Playbook, PlaybookStep

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 32


def canonical_steps_json(steps: Sequence[PlaybookStep]) -> bytes:
    """Return the canonical signed byte form of *steps*."""
    canonical = [
        {
            "action": step.action.value,
            "description": step.description,
            "optional": step.optional,
            "position": step.position,
            "profile_key": step.profile_key.value if step.profile_key else None,
            "selector": step.selector,
            "value": step.value,
            "wait_after_ms": None,
        }
        for step in sorted(steps, key=lambda s: s.position)
    ]
    return json.dumps(canonical, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")


def load_verify_key(public_key_b64: str) -> VerifyKey:
    """Decode a base64 Ed25519 public key.

    Raises:
        PlaybookSignatureError: If the key is missing or malformed.
    """
    if not public_key_b64:
        raise PlaybookSignatureError("No playbook public key is configured")
    try:
        key_bytes = base64.b64decode(public_key_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PlaybookSignatureError(f"Playbook public key is not valid base64: {exc}") from exc
    if len(key_bytes) != PUBLIC_KEY_LENGTH:
        raise PlaybookSignatureError(
            f"Playbook public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(key_bytes)}"
        )
    return VerifyKey(key_bytes)


def verify_playbook_signature(playbook: Playbook, public_key_b64: str) -> None:
    """Verify the Ed25519 signature on a community playbook.

    Args:
        playbook: The playbook as fetched from the catalog.
        public_key_b64: Base64 Ed25519 verify key.

    Raises:
        PlaybookSignatureError: If the signature is missing, malformed or invalid.
    """
    if not playbook.signature:
        raise PlaybookSignatureError("Community playbook is missing a signature")

    try:
        signature = base64.b64decode(playbook.signature, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PlaybookSignatureError(f"Invalid signature encoding: {exc}") from exc
    if len(signature) != SIGNATURE_LENGTH:
        raise PlaybookSignatureError(f"Signature must be exactly {SIGNATURE_LENGTH} bytes")

    verify_key = load_verify_key(public_key_b64)
    try:
        verify_key.verify(canonical_steps_json(playbook.steps), signature)
    except BadSignatureError as exc:
        logger.warning("Signature verification failed for playbook %s", playbook.id)
        raise PlaybookSignatureError("Playbook signature verification failed") from exc
