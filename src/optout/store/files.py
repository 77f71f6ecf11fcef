"""JSON file helpers plus loaders for the broker registry and profile snapshot.

All stores in this package share the same conventions: pretty-printed
UTF-8 JSON, parent directories created on write, and a missing file read as
empty. I/O and decode failures surface as ``StoreError``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from optout.exceptions import StoreError
from optout.models.broker import Broker, BrokerRegistry
from optout.models.profile import Profile

logger = logging.getLogger(__name__)


def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from *path*, returning *default* if the file does not exist."""
    if not path.exists():
        return default
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise StoreError(f"Cannot read {path}: {exc}") from exc


def write_json(path: Path, data: Any) -> None:
    """Write *data* to *path* atomically (temp file + rename)."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, path)
    except OSError as exc:
        raise StoreError(f"Cannot write {path}: {exc}") from exc


def load_registry(path: Path) -> list[Broker]:
    """Load the broker registry.

    Accepts either the ``{"version": ..., "brokers": [...]}`` envelope or a
    bare list of brokers. A missing file yields an empty registry.
    """
    raw = read_json(path, default=[])
    try:
        if isinstance(raw, list):
            return [Broker.model_validate(item) for item in raw]
        registry = BrokerRegistry.model_validate(raw)
    except ValidationError as exc:
        raise StoreError(f"Invalid broker registry {path}: {exc.error_count()} error(s)") from exc
    logger.debug("Loaded %d brokers from %s (version %s)", len(registry.brokers), path, registry.version or "?")
    return registry.brokers


def load_profile(path: Path) -> Profile:
    """Load the profile snapshot. A missing file yields an empty profile.

    Validation errors are reported by count only so field values never
    reach logs or tracebacks.
    """
    raw = read_json(path, default={})
    try:
        return Profile.model_validate(raw)
    except ValidationError as exc:
        raise StoreError(f"Invalid profile file {path}: {exc.error_count()} error(s)") from None
