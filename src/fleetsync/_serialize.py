"""JSON-safe serialization for outgoing payloads.

Entities may carry back-references (a location holding its previous fix,
a route pointing at its driver object, ...). Before a push the payload is
walked once: a container that is already on the current path is replaced
with :data:`CIRCULAR_MARKER`, callables are dropped and values JSON cannot
represent are converted or nulled. Shared (non-circular) references are
serialized at every place they appear.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from fleetsync.exceptions import FleetSerializationError

CIRCULAR_MARKER = "[Circular]"

_DROP = object()


def _sanitize(value: Any, ancestors: set[int]) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Enum):
        return _sanitize(value.value, ancestors)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return _sanitize(value.model_dump(by_alias=True, exclude_none=True, mode="json"), ancestors)
    if callable(value):
        return _DROP

    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in ancestors:
            return CIRCULAR_MARKER
        ancestors.add(marker)
        try:
            if isinstance(value, Mapping):
                result: dict[str, Any] = {}
                for key, item in value.items():
                    cleaned = _sanitize(item, ancestors)
                    if cleaned is not _DROP:
                        result[str(key)] = cleaned
                return result
            items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
            return [cleaned for cleaned in (_sanitize(item, ancestors) for item in items) if cleaned is not _DROP]
        finally:
            ancestors.discard(marker)

    return repr(value)


def to_json_safe(value: Any) -> Any:
    """Return a JSON-serializable copy of *value* with cycles cut."""
    cleaned = _sanitize(value, set())
    return None if cleaned is _DROP else cleaned


def dumps_safe(value: Any) -> str:
    """Serialize *value* to compact JSON after :func:`to_json_safe`."""
    try:
        return json.dumps(to_json_safe(value), separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise FleetSerializationError(f"payload is not JSON-serializable: {exc}") from exc
