"""Typed entity models for fleetsync."""

from fleetsync.models._base import FleetBaseModel, clamp_percent, parse_timestamp, utcnow_iso
from fleetsync.models.driver import (
    MOVEMENT_TRANSITIONS,
    Driver,
    DriverStatus,
    MovementStatus,
    can_transition,
    check_movement_transition,
)
from fleetsync.models.kinds import KIND_LAYOUTS, CollectionKind, CollectionShape, KindLayout, MergeStrategy
from fleetsync.models.location import DriverLocation, derive_speed_kmh, haversine_km, locations_from_report
from fleetsync.models.records import Alert, Bin, BinStatus, Collection, Issue, derive_bin_status
from fleetsync.models.route import Route, RouteStatus, check_route_transition

__all__ = [
    "KIND_LAYOUTS",
    "MOVEMENT_TRANSITIONS",
    "Alert",
    "Bin",
    "BinStatus",
    "Collection",
    "CollectionKind",
    "CollectionShape",
    "Driver",
    "DriverLocation",
    "DriverStatus",
    "FleetBaseModel",
    "Issue",
    "KindLayout",
    "MergeStrategy",
    "MovementStatus",
    "Route",
    "RouteStatus",
    "can_transition",
    "check_movement_transition",
    "check_route_transition",
    "clamp_percent",
    "derive_bin_status",
    "derive_speed_kmh",
    "haversine_km",
    "locations_from_report",
    "parse_timestamp",
    "utcnow_iso",
]
