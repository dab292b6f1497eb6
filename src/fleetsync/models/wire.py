"""Envelopes returned by the authoritative store API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleetsync.models._base import utcnow_iso

UpdateType = Literal["full", "partial"]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Snapshot(_WireModel):
    """Full authoritative state as returned by ``GET /sync``.

    ``data`` keeps the raw collection values keyed by their wire names;
    unknown keys pass through so newer servers do not break older clients.
    """

    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utcnow_iso)


class PushRequest(_WireModel):
    data: dict[str, Any]
    update_type: UpdateType = "partial"
    timestamp: str = Field(default_factory=utcnow_iso)


class PushAck(_WireModel):
    success: bool = True
    message: str = ""
    timestamp: str | None = None


class HealthReport(_WireModel):
    """``GET /health`` answer: liveness plus per-collection counts."""

    status: str
    uptime: float = 0.0
    data_status: dict[str, Any] = Field(default_factory=dict)
    timestamp: str | None = None


class ServerInfo(_WireModel):
    name: str
    version: str
