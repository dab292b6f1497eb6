"""Base model and timestamp helpers for fleet entities.

Every entity model inherits from :class:`FleetBaseModel` which
provides:

* ``alias_generator=to_camel`` so the camelCase wire keys map
  automatically to snake_case fields.
* ``extra="allow"`` so collaborator fields (names, e-mail, vehicle
  data, ...) survive a parse/dump round trip untouched.
* :meth:`FleetBaseModel.to_wire` which dumps back to the camelCase
  JSON shape stored locally and on the server.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def utcnow_iso() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch number (seconds **or** ms) to UTC.

    Returns ``None`` when the value is missing or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


def clamp_percent(value: Any) -> float:
    """Clamp a numeric percentage into ``[0, 100]``."""
    number = float(value)
    if number != number:  # NaN
        raise ValueError("percentage must be a number")
    return max(0.0, min(100.0, number))


class FleetBaseModel(BaseModel):
    """Base for fleet entity models."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase JSON shape used on the wire and in storage."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
