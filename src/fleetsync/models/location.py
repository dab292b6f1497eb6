"""Driver location model and the observer-endpoint translation."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from fleetsync._constants import EARTH_RADIUS_KM
from fleetsync.models._base import parse_timestamp, utcnow, utcnow_iso


def _safe_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def derive_speed_kmh(
    previous: dict[str, Any] | None,
    lat: float,
    lng: float,
    now: datetime | None = None,
) -> float:
    """Speed from the previous fix to ``(lat, lng)``, rounded to 2 decimals.

    Returns ``0.0`` without a usable previous fix or elapsed time.
    """
    if not previous:
        return 0.0
    prev_lat = _safe_float(previous.get("lat", previous.get("latitude")))
    prev_lng = _safe_float(previous.get("lng", previous.get("longitude")))
    prev_ts = parse_timestamp(previous.get("timestamp"))
    if prev_lat is None or prev_lng is None or prev_ts is None:
        return 0.0
    current = now or utcnow()
    hours = (current - prev_ts).total_seconds() / 3600.0
    if hours <= 0:
        return 0.0
    return round(haversine_km(prev_lat, prev_lng, lat, lng) / hours, 2)


class DriverLocation(BaseModel):
    """Latest known position of one driver.

    Accepts both ``lat``/``lng`` and ``latitude``/``longitude`` on input;
    always dumps ``lat``/``lng``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    lat: float = Field(validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(validation_alias=AliasChoices("lng", "longitude", "lon"))
    timestamp: str = Field(default_factory=utcnow_iso)
    accuracy: float | None = None
    speed: float = 0.0
    heading: float | None = None
    altitude: float | None = None
    status: str | None = None

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        parsed = _safe_float(value)
        if parsed is None:
            raise ValueError("coordinate must be numeric")
        return parsed

    @field_validator("accuracy", "heading", "altitude", mode="before")
    @classmethod
    def _coerce_optional(cls, value: Any) -> float | None:
        return _safe_float(value)

    @field_validator("speed", mode="before")
    @classmethod
    def _coerce_speed(cls, value: Any) -> float:
        return _safe_float(value) or 0.0

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, mode="json")


def locations_from_report(drivers: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Translate ``GET /driver/locations`` records into the location-map shape.

    The observer endpoint reports ``location.latitude``/``longitude`` while the
    local store keys locations by driver ID with ``lat``/``lng``. Records
    without a location or without usable coordinates are skipped.
    """
    result: dict[str, dict[str, Any]] = {}
    for record in drivers:
        if not isinstance(record, dict):
            continue
        driver_id = record.get("id")
        location = record.get("location")
        if not isinstance(driver_id, str) or not isinstance(location, dict):
            continue
        lat = _safe_float(location.get("latitude", location.get("lat")))
        lng = _safe_float(location.get("longitude", location.get("lng")))
        if lat is None or lng is None:
            continue
        result[driver_id] = {
            "lat": lat,
            "lng": lng,
            "timestamp": record.get("lastUpdate") or utcnow_iso(),
            "accuracy": _safe_float(location.get("accuracy")) or 10.0,
            "status": record.get("status") or "active",
        }
    return result
