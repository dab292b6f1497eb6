from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
from pydantic import ValidationError

from fleetsync._serialize import dumps_safe
from fleetsync.agent import SyncAgent
from fleetsync.client import FleetClient
from fleetsync.config import SyncConfig
from fleetsync.exceptions import (
    EntityNotFoundError,
    FleetTransportError,
    InvalidTransitionError,
    VersionConflictError,
)
from fleetsync.models._base import utcnow_iso
from fleetsync.server.store import AuthoritativeStore
from fleetsync.state.store import LocalEntityStore


@dataclass
class FakeClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _failure(code: str, message: str, http_status: int) -> dict[str, Any]:
    return {"success": False, "error": message, "code": code, "httpStatus": http_status}


@dataclass
class FakeFleetBackend:
    """In-process stand-in for the HTTP transport, backed by a real AuthoritativeStore."""

    server: AuthoritativeStore = field(default_factory=AuthoritativeStore)
    online: bool = True
    delay: float = 0.0
    on_request: Callable[[str, str], None] | None = None
    calls: dict[str, int] = field(default_factory=dict)
    requests: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    def count(self, method: str, endpoint: str) -> int:
        return self.calls.get(f"{method} {endpoint}", 0)

    def bodies(self, method: str, endpoint: str) -> list[dict[str, Any]]:
        return [body for m, e, body in self.requests if m == method and e == endpoint]

    async def request_json(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        key = f"{method} {endpoint}"
        self.calls[key] = self.calls.get(key, 0) + 1
        if self.on_request is not None:
            self.on_request(method, endpoint)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.online:
            raise FleetTransportError(f"Connection refused for {endpoint}", endpoint=endpoint)

        body: dict[str, Any] = json.loads(dumps_safe(payload)) if payload is not None else {}
        self.requests.append((method, endpoint, body))
        try:
            return self._route(method, endpoint, body)
        except EntityNotFoundError as exc:
            return _failure("not_found", str(exc), 404)
        except VersionConflictError as exc:
            return _failure("version_conflict", str(exc), 409)
        except InvalidTransitionError as exc:
            return _failure("invalid_transition", str(exc), 409)
        except (ValidationError, ValueError, KeyError, TypeError) as exc:
            return _failure("bad_request", str(exc), 400)

    def _route(self, method: str, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        server = self.server
        if endpoint == "/sync":
            if method == "GET":
                return {"success": True, "data": server.snapshot(), "timestamp": utcnow_iso()}
            last_update = server.apply_update(body["data"], body.get("updateType") or "full")
            return {"success": True, "message": "Data updated successfully", "timestamp": last_update}
        if endpoint == "/health":
            return server.health()
        if endpoint == "/info":
            return {"name": "fake", "version": "0"}
        if endpoint == "/driver/locations":
            drivers = server.driver_locations()
            return {"success": True, "drivers": drivers, "count": len(drivers)}
        if endpoint == "/routes":
            return {"success": True, "route": server.upsert_route(body, expected_version=body.get("expectedVersion"))}
        if endpoint == "/collections":
            return {"success": True, "collection": server.add_collection(body)}

        parts = endpoint.strip("/").split("/")
        if parts[0] != "driver" or len(parts) < 2:
            raise AssertionError(f"Unexpected endpoint in fake backend: {method} {endpoint}")
        driver_id = parts[1]
        action = parts[2] if len(parts) > 2 else None
        version = body.get("expectedVersion")

        if action is None:
            return {"success": True, "driver": server.get_driver(driver_id)}
        if action == "location":
            return {"success": True, "location": server.update_location(driver_id, body)}
        if action == "status":
            driver = server.update_status(
                driver_id,
                movement_status=body.get("movementStatus"),
                status=body.get("status"),
                expected_version=version,
            )
            return {"success": True, "movementStatus": driver.get("movementStatus"), "version": driver["version"]}
        if action == "fuel":
            driver = server.update_fuel(driver_id, body.get("fuelLevel"), expected_version=version)
            return {"success": True, "fuelLevel": driver["fuelLevel"], "version": driver["version"]}
        if action == "route-completion":
            result = server.complete_route(
                driver_id,
                completion_time=body.get("completionTime"),
                movement_status=body.get("movementStatus"),
                expected_version=version,
            )
            return {"success": True, "driver": result.driver, "completedRoutes": list(result.completed_route_ids)}
        if action == "update":
            return {"success": True, "driver": server.update_driver(driver_id, body, expected_version=version)}
        if action == "routes":
            return {"success": True, "routes": server.driver_routes(driver_id)}
        raise AssertionError(f"Unexpected endpoint in fake backend: {method} {endpoint}")


def make_driver(driver_id: str = "USR-001", **fields: Any) -> dict[str, Any]:
    driver = {
        "id": driver_id,
        "type": "driver",
        "name": "Dana Driver",
        "username": driver_id.lower(),
        "movementStatus": "stationary",
        "status": "active",
        "fuelLevel": 75.0,
    }
    driver.update(fields)
    return driver


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeFleetBackend:
    return FakeFleetBackend()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(base_url="http://fleet.test/api", actor_id="USR-001", max_retries=3)


@pytest.fixture
def store() -> LocalEntityStore:
    return LocalEntityStore()


@pytest.fixture
def agent(config: SyncConfig, store: LocalEntityStore, backend: FakeFleetBackend, clock: FakeClock) -> SyncAgent:
    client = FleetClient(config, transport=backend)
    return SyncAgent(config, store, client, clock=clock)
