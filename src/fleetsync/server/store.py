"""Authoritative in-memory snapshot.

All operations are synchronous and never await, so on a single event loop
every call (including the route-completion cascade) is applied atomically
with respect to other requests. Concurrent writers are applied in arrival
order, last writer wins per field, unless they pass an ``expected_version``
for drivers and routes.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fleetsync.exceptions import EntityNotFoundError, VersionConflictError
from fleetsync.models._base import clamp_percent, utcnow_iso
from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.models.kinds import CollectionKind
from fleetsync.models.location import DriverLocation
from fleetsync.models.records import Collection
from fleetsync.models.route import Route, RouteStatus, check_route_transition
from fleetsync.models.wire import UpdateType
from fleetsync.state.store import generate_id

_logger = logging.getLogger(__name__)

SERVER_NAME = "fleetsync authoritative store"

# Kinds whose entities carry a server-side version counter.
VERSIONED_KINDS: tuple[CollectionKind, ...] = (CollectionKind.USERS, CollectionKind.ROUTES)


@dataclass(frozen=True)
class CascadeResult:
    driver: dict[str, Any]
    completed_route_ids: tuple[str, ...]
    at: str


def _initial_data() -> dict[str, Any]:
    data: dict[str, Any] = {str(kind): kind.layout.empty() for kind in CollectionKind}
    data["lastUpdate"] = utcnow_iso()
    return data


class AuthoritativeStore:
    """Single mutable snapshot keyed by collection name."""

    def __init__(self, *, clock: Callable[[], str] = utcnow_iso) -> None:
        self._clock = clock
        self._started = time.monotonic()
        self._data: dict[str, Any] = _initial_data()
        self._versions: dict[tuple[CollectionKind, str], int] = {}

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def version(self, kind: CollectionKind, entity_id: str) -> int:
        return self._versions.get((kind, entity_id), 0)

    def _bump(self, kind: CollectionKind, entity_id: str) -> int:
        key = (kind, entity_id)
        self._versions[key] = self._versions.get(key, 0) + 1
        return self._versions[key]

    def _check_version(self, kind: CollectionKind, entity_id: str, expected: int | None) -> None:
        if expected is None:
            return
        current = self.version(kind, entity_id)
        if current != expected:
            raise VersionConflictError(
                f"{kind} {entity_id} is at version {current}, expected {expected}",
                code="version_conflict",
                endpoint=str(kind),
            )

    def _stamped(self, kind: CollectionKind, entity: Any) -> Any:
        if not isinstance(entity, dict) or not isinstance(entity.get("id"), str):
            return copy.deepcopy(entity)
        return {**copy.deepcopy(entity), "version": self.version(kind, entity["id"])}

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @property
    def last_update(self) -> str:
        return self._data["lastUpdate"]

    def _touch(self) -> str:
        now = self._clock()
        self._data["lastUpdate"] = now
        return now

    def _list(self, kind: CollectionKind) -> list[Any]:
        value = self._data.get(str(kind))
        if not isinstance(value, list):
            value = []
            self._data[str(kind)] = value
        return value

    def _map(self, kind: CollectionKind) -> dict[str, Any]:
        value = self._data.get(str(kind))
        if not isinstance(value, dict):
            value = {}
            self._data[str(kind)] = value
        return value

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the whole store with version counters attached."""
        data = copy.deepcopy(self._data)
        for kind in VERSIONED_KINDS:
            value = data.get(str(kind))
            if isinstance(value, list):
                data[str(kind)] = [self._stamped(kind, e) for e in value]
        return data

    def apply_update(self, data: dict[str, Any], update_type: UpdateType = "partial") -> str:
        """Replace each top-level key present in *data* with its new value.

        Both update types overwrite whole keys; ``full`` only differs in
        intent (the sender pushed its entire store). Versions of drivers
        and routes whose content changed are bumped.
        """
        if not isinstance(data, dict):
            raise ValueError("data must be an object")
        for key, value in data.items():
            if key == "lastUpdate" or value is None:
                continue
            kind = CollectionKind.parse(key)
            if kind in VERSIONED_KINDS and isinstance(value, list):
                value = self._replace_versioned(kind, value)
            self._data[key] = copy.deepcopy(value)
        now = self._touch()
        _logger.info("Applied %s update: %s", update_type, ", ".join(sorted(data)) or "(empty)")
        return now

    def _replace_versioned(self, kind: CollectionKind, incoming: list[Any]) -> list[Any]:
        current = {e["id"]: e for e in self._list(kind) if isinstance(e, dict) and isinstance(e.get("id"), str)}
        result: list[Any] = []
        for entity in incoming:
            if not isinstance(entity, dict):
                result.append(entity)
                continue
            cleaned = {k: v for k, v in entity.items() if k != "version"}
            entity_id = cleaned.get("id")
            if isinstance(entity_id, str) and current.get(entity_id) != cleaned:
                self._bump(kind, entity_id)
            result.append(cleaned)
        return result

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def _find_user(self, driver_id: str, *, drivers_only: bool = False) -> dict[str, Any]:
        for user in self._list(CollectionKind.USERS):
            if not isinstance(user, dict) or user.get("id") != driver_id:
                continue
            if drivers_only and user.get("type") != "driver":
                continue
            return user
        raise EntityNotFoundError(f"Driver {driver_id} not found", code="not_found", endpoint="users")

    def get_driver(self, driver_id: str) -> dict[str, Any]:
        return self._stamped(CollectionKind.USERS, self._find_user(driver_id))

    def update_location(self, driver_id: str, body: dict[str, Any]) -> dict[str, Any]:
        self._find_user(driver_id)
        location = DriverLocation.model_validate(body).to_wire()
        self._map(CollectionKind.DRIVER_LOCATIONS)[driver_id] = location
        self._touch()
        return copy.deepcopy(location)

    def driver_locations(self) -> list[dict[str, Any]]:
        """Per-driver location report in the observer endpoint's field names."""
        locations = self._map(CollectionKind.DRIVER_LOCATIONS)
        report: list[dict[str, Any]] = []
        for user in self._list(CollectionKind.USERS):
            if not isinstance(user, dict) or user.get("type") != "driver":
                continue
            location = locations.get(user.get("id"))
            if not isinstance(location, dict):
                continue
            report.append(
                {
                    "id": user["id"],
                    "name": user.get("name"),
                    "status": user.get("status") or str(DriverStatus.ACTIVE),
                    "movementStatus": user.get("movementStatus") or str(MovementStatus.STATIONARY),
                    "location": {
                        "latitude": location.get("lat"),
                        "longitude": location.get("lng"),
                        "accuracy": location.get("accuracy"),
                    },
                    "lastUpdate": location.get("timestamp") or user.get("lastUpdate"),
                }
            )
        return report

    def update_status(
        self,
        driver_id: str,
        *,
        movement_status: str | None = None,
        status: str | None = None,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        driver = self._find_user(driver_id)
        self._check_version(CollectionKind.USERS, driver_id, expected_version)
        movement = MovementStatus(movement_status) if movement_status else None
        availability = DriverStatus(status) if status else None
        now = self._clock()
        if movement is not None:
            driver["movementStatus"] = str(movement)
        if availability is not None:
            driver["status"] = str(availability)
        driver["lastStatusUpdate"] = now
        driver["lastUpdate"] = now
        self._bump(CollectionKind.USERS, driver_id)
        self._touch()
        return self._stamped(CollectionKind.USERS, driver)

    def update_fuel(self, driver_id: str, fuel_level: Any, *, expected_version: int | None = None) -> dict[str, Any]:
        driver = self._find_user(driver_id)
        self._check_version(CollectionKind.USERS, driver_id, expected_version)
        if fuel_level is None or isinstance(fuel_level, bool):
            raise ValueError("fuelLevel is required")
        level = clamp_percent(fuel_level)
        now = self._clock()
        driver["fuelLevel"] = level
        driver["lastFuelUpdate"] = now
        driver["lastUpdate"] = now
        self._bump(CollectionKind.USERS, driver_id)
        self._touch()
        return self._stamped(CollectionKind.USERS, driver)

    def update_driver(
        self,
        driver_id: str,
        updates: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Generic profile merge. ``id`` and ``version`` cannot be overwritten."""
        driver = self._find_user(driver_id)
        self._check_version(CollectionKind.USERS, driver_id, expected_version)
        cleaned = {k: v for k, v in updates.items() if k not in ("id", "version", "expectedVersion")}
        if "movementStatus" in cleaned:
            cleaned["movementStatus"] = str(MovementStatus(cleaned["movementStatus"]))
        if "status" in cleaned and driver.get("type") == "driver":
            cleaned["status"] = str(DriverStatus(cleaned["status"]))
        if "fuelLevel" in cleaned:
            cleaned["fuelLevel"] = clamp_percent(cleaned["fuelLevel"])
        driver.update(cleaned)
        driver["lastUpdate"] = self._clock()
        self._bump(CollectionKind.USERS, driver_id)
        self._touch()
        return self._stamped(CollectionKind.USERS, driver)

    def complete_route(
        self,
        driver_id: str,
        *,
        completion_time: str | None = None,
        movement_status: str | None = None,
        expected_version: int | None = None,
    ) -> CascadeResult:
        """End a driver's route: driver back to ``stationary`` and every
        non-terminal route of the driver ``completed``, in one step."""
        driver = self._find_user(driver_id, drivers_only=True)
        self._check_version(CollectionKind.USERS, driver_id, expected_version)
        movement = MovementStatus(movement_status) if movement_status else MovementStatus.STATIONARY
        now = self._clock()
        at = completion_time or now

        open_routes: list[dict[str, Any]] = []
        for route in self._list(CollectionKind.ROUTES):
            if not isinstance(route, dict) or route.get("driverId") != driver_id:
                continue
            try:
                status = RouteStatus(route.get("status", RouteStatus.PENDING))
            except ValueError:
                continue
            if not status.is_terminal:
                open_routes.append(route)

        driver.update(
            {
                "movementStatus": str(movement),
                "status": str(DriverStatus.AVAILABLE),
                "lastRouteCompletion": at,
                "routeEndTime": at,
                "lastStatusUpdate": now,
                "lastUpdate": now,
            }
        )
        self._bump(CollectionKind.USERS, driver_id)
        for route in open_routes:
            route.update(
                {
                    "status": str(RouteStatus.COMPLETED),
                    "completedAt": at,
                    "completedBy": driver_id,
                    "lastUpdate": now,
                }
            )
            self._bump(CollectionKind.ROUTES, route["id"])
        self._touch()
        _logger.info("Route completion for %s closed %d route(s)", driver_id, len(open_routes))
        return CascadeResult(
            driver=self._stamped(CollectionKind.USERS, driver),
            completed_route_ids=tuple(r["id"] for r in open_routes),
            at=at,
        )

    # ------------------------------------------------------------------
    # Routes / collections
    # ------------------------------------------------------------------

    def upsert_route(self, body: dict[str, Any], *, expected_version: int | None = None) -> dict[str, Any]:
        """Insert or replace a route by ID; backwards status moves are refused."""
        route = Route.model_validate(body)
        routes = self._list(CollectionKind.ROUTES)
        index = next(
            (i for i, r in enumerate(routes) if isinstance(r, dict) and r.get("id") == route.id),
            None,
        )
        if index is not None:
            self._check_version(CollectionKind.ROUTES, route.id, expected_version)
            existing = routes[index]
            try:
                current = RouteStatus(existing.get("status", RouteStatus.PENDING))
            except ValueError:
                current = RouteStatus.PENDING
            check_route_transition(current, route.status)
        elif expected_version not in (None, 0):
            self._check_version(CollectionKind.ROUTES, route.id, expected_version)

        stored = {k: v for k, v in route.to_wire().items() if k not in ("version", "expectedVersion")}
        stored["lastUpdate"] = self._clock()
        if index is None:
            routes.append(stored)
        else:
            routes[index] = stored
        self._bump(CollectionKind.ROUTES, route.id)
        self._touch()
        return self._stamped(CollectionKind.ROUTES, stored)

    def driver_routes(self, driver_id: str) -> list[dict[str, Any]]:
        return [
            self._stamped(CollectionKind.ROUTES, r)
            for r in self._list(CollectionKind.ROUTES)
            if isinstance(r, dict) and r.get("driverId") == driver_id and r.get("status") != RouteStatus.COMPLETED
        ]

    def add_collection(self, body: dict[str, Any]) -> dict[str, Any]:
        """Append a collection event; an existing ID is never overwritten."""
        payload = dict(body)
        payload.setdefault("id", generate_id("COL"))
        collection = Collection.model_validate(payload).to_wire()
        collections = self._list(CollectionKind.COLLECTIONS)
        for existing in collections:
            if isinstance(existing, dict) and existing.get("id") == collection["id"]:
                return copy.deepcopy(existing)
        collections.append(collection)
        self._touch()
        return copy.deepcopy(collection)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        counts: dict[str, Any] = {}
        for kind in (CollectionKind.USERS, CollectionKind.BINS, CollectionKind.ROUTES, CollectionKind.COLLECTIONS):
            value = self._data.get(str(kind))
            counts[str(kind)] = len(value) if isinstance(value, (list, dict)) else 0
        counts["lastUpdate"] = self.last_update
        return {
            "status": "OK",
            "timestamp": self._clock(),
            "uptime": round(time.monotonic() - self._started, 3),
            "dataStatus": counts,
        }
