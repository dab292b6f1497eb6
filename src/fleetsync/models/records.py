"""Bins, collection events, issues and alerts."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator, model_validator

from fleetsync._constants import BIN_CRITICAL_FILL, BIN_FIRE_RISK_TEMPERATURE, BIN_WARNING_FILL
from fleetsync.models._base import FleetBaseModel, clamp_percent, utcnow_iso


class BinStatus(StrEnum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    FIRE_RISK = "fire-risk"


def derive_bin_status(fill: float, temperature: float | None = None) -> BinStatus:
    if temperature is not None and temperature > BIN_FIRE_RISK_TEMPERATURE:
        return BinStatus.FIRE_RISK
    if fill >= BIN_CRITICAL_FILL:
        return BinStatus.CRITICAL
    if fill >= BIN_WARNING_FILL:
        return BinStatus.WARNING
    return BinStatus.NORMAL


class Bin(FleetBaseModel):
    """A smart bin. Read by the sync core, never centrally mutated."""

    id: str
    fill: float = 0.0
    status: BinStatus = BinStatus.NORMAL
    temperature: float | None = None
    lat: float | None = None
    lng: float | None = None

    @field_validator("fill", mode="before")
    @classmethod
    def _clamp_fill(cls, value: object) -> float:
        if value is None:
            return 0.0
        return clamp_percent(value)

    @model_validator(mode="after")
    def _derive_status(self) -> Bin:
        object.__setattr__(self, "status", derive_bin_status(self.fill, self.temperature))
        return self


class Collection(FleetBaseModel):
    """A bin pickup event. Immutable once created."""

    id: str
    bin_id: str
    driver_id: str
    timestamp: str = Field(default_factory=utcnow_iso)
    weight: float = Field(default=0.0, ge=0)


class Issue(FleetBaseModel):
    """A problem reported by a driver."""

    id: str
    type: str
    priority: str
    description: str
    driver_id: str | None = None
    timestamp: str = Field(default_factory=utcnow_iso)
    status: str = "open"


class Alert(FleetBaseModel):
    id: str
    type: str
    message: str
    priority: str
    related_id: str | None = None
    timestamp: str = Field(default_factory=utcnow_iso)
    status: str = "active"
