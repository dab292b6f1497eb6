"""Per-driver endpoints.

Endpoints:
  - GET  /driver/{id}
  - POST /driver/{id}/location
  - POST /driver/{id}/status
  - POST /driver/{id}/fuel
  - POST /driver/{id}/route-completion
  - POST /driver/{id}/update
  - GET  /driver/{id}/routes
  - GET  /driver/locations
"""

from __future__ import annotations

from typing import Any

from fleetsync._api._common import request_success
from fleetsync._constants import DRIVER_LOCATIONS_PATH, driver_path
from fleetsync._transport import Transport
from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.models.location import DriverLocation, locations_from_report


def _with_version(payload: dict[str, Any], expected_version: int | None) -> dict[str, Any]:
    if expected_version is not None:
        payload["expectedVersion"] = expected_version
    return payload


async def fetch_driver(transport: Transport, driver_id: str) -> dict[str, Any]:
    response = await request_success(transport, "GET", driver_path(driver_id))
    return dict(response.get("driver") or {})


async def post_location(transport: Transport, driver_id: str, location: DriverLocation) -> dict[str, Any]:
    response = await request_success(transport, "POST", driver_path(driver_id, "location"), location.to_wire())
    return dict(response.get("location") or {})


async def fetch_driver_locations(transport: Transport) -> dict[str, dict[str, Any]]:
    """All driver positions, already translated into the location-map shape."""
    response = await request_success(transport, "GET", DRIVER_LOCATIONS_PATH)
    drivers = response.get("drivers")
    return locations_from_report(drivers if isinstance(drivers, list) else [])


async def post_status(
    transport: Transport,
    driver_id: str,
    *,
    movement_status: MovementStatus | None = None,
    status: DriverStatus | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if movement_status is not None:
        payload["movementStatus"] = str(movement_status)
    if status is not None:
        payload["status"] = str(status)
    return await request_success(
        transport, "POST", driver_path(driver_id, "status"), _with_version(payload, expected_version)
    )


async def post_fuel(
    transport: Transport,
    driver_id: str,
    fuel_level: float,
    *,
    expected_version: int | None = None,
) -> dict[str, Any]:
    payload = _with_version({"fuelLevel": fuel_level}, expected_version)
    return await request_success(transport, "POST", driver_path(driver_id, "fuel"), payload)


async def post_route_completion(
    transport: Transport,
    driver_id: str,
    *,
    completion_time: str,
    status: DriverStatus = DriverStatus.AVAILABLE,
    movement_status: MovementStatus = MovementStatus.STATIONARY,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """End the driver's route server-side; the server completes all of the
    driver's non-terminal routes in the same operation."""
    payload = {
        "completionTime": completion_time,
        "status": str(status),
        "movementStatus": str(movement_status),
    }
    response = await request_success(
        transport, "POST", driver_path(driver_id, "route-completion"), _with_version(payload, expected_version)
    )
    return dict(response.get("driver") or {})


async def post_driver_update(
    transport: Transport,
    driver_id: str,
    updates: dict[str, Any],
    *,
    expected_version: int | None = None,
) -> dict[str, Any]:
    payload = _with_version(dict(updates), expected_version)
    response = await request_success(transport, "POST", driver_path(driver_id, "update"), payload)
    return dict(response.get("driver") or {})


async def fetch_driver_routes(transport: Transport, driver_id: str) -> list[dict[str, Any]]:
    response = await request_success(transport, "GET", driver_path(driver_id, "routes"))
    routes = response.get("routes")
    return [r for r in routes if isinstance(r, dict)] if isinstance(routes, list) else []
