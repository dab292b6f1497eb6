"""Order-independent collection fingerprints.

Each entity contributes ``id|lastUpdate-or-timestamp|checksum`` where the
checksum covers a small set of fields that change often without touching
``lastUpdate``. Entries are sorted by ID, so reordering a collection never
changes its fingerprint. Equal fingerprints mean "no observable change";
a change confined to a field outside :data:`VOLATILE_FIELDS` that also
leaves the timestamp alone is not detected.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from fleetsync._serialize import to_json_safe

VOLATILE_FIELDS: tuple[str, ...] = ("name", "status", "movementStatus", "fuelLevel", "fill")


def _digest(text: str) -> str:
    return hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()


def _checksum(entity: Mapping[str, Any]) -> str:
    volatile = [entity.get(field) for field in VOLATILE_FIELDS]
    return _digest(json.dumps(to_json_safe(volatile), sort_keys=True))[:8]


def _entity_line(entity: Mapping[str, Any]) -> tuple[str, str]:
    entity_id = str(entity.get("id", ""))
    stamp = entity.get("lastUpdate") or entity.get("timestamp") or ""
    return entity_id, f"{entity_id}|{stamp}|{_checksum(entity)}"


def fingerprint(value: Any) -> str:
    """Fingerprint one collection value (entity list or map)."""
    if isinstance(value, list):
        lines = sorted(_entity_line(e) for e in value if isinstance(e, Mapping))
        return _digest("\n".join(line for _, line in lines))
    if isinstance(value, Mapping):
        return _digest(json.dumps(to_json_safe(value), sort_keys=True, separators=(",", ":")))
    if value is None:
        return _digest("")
    return _digest(json.dumps(to_json_safe(value), sort_keys=True))


def store_fingerprint(collections: Mapping[str, Any]) -> str:
    """Fingerprint a whole snapshot, keyed by collection name."""
    parts = [f"{key}={fingerprint(collections[key])}" for key in sorted(collections)]
    return _digest(";".join(parts))
