"""End-to-end round trips: real aiohttp client and server on one event loop."""

from __future__ import annotations

from pathlib import Path

import pytest
from aiohttp.test_utils import TestServer
from conftest import FakeClock, make_driver

from fleetsync import (
    DriverStateController,
    FleetClient,
    LocalEntityStore,
    SyncAgent,
    SyncConfig,
    ToggleResult,
)
from fleetsync.exceptions import EntityNotFoundError, FleetTransportError, VersionConflictError
from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.server import AuthoritativeStore, create_app

pytestmark = pytest.mark.e2e


def _server() -> tuple[TestServer, AuthoritativeStore]:
    store = AuthoritativeStore()
    store.apply_update({"users": [make_driver("USR-001"), {"id": "USR-900", "type": "manager", "username": "mgr"}]})
    return TestServer(create_app(store=store)), store


def _config(server: TestServer, **overrides: object) -> SyncConfig:
    return SyncConfig(base_url=str(server.make_url("/api")), **overrides)  # type: ignore[arg-type]



@pytest.mark.asyncio
async def test_client_endpoints_over_http() -> None:
    test_server, _ = _server()
    async with test_server, FleetClient(_config(test_server)) as client:
        health = await client.health()
        assert health.status == "OK"
        assert health.data_status["users"] == 2

        snapshot = await client.pull_snapshot()
        assert [u["id"] for u in snapshot.data["users"]] == ["USR-001", "USR-900"]

        result = await client.update_status(
            "USR-001", movement_status=MovementStatus.ON_ROUTE, status=DriverStatus.ACTIVE
        )
        assert result["movementStatus"] == "on-route"

        with pytest.raises(VersionConflictError):
            await client.update_fuel("USR-001", 10.0, expected_version=0)

        with pytest.raises(EntityNotFoundError):
            await client.get_driver("USR-404")

        driver = await client.complete_route("USR-001", completion_time="2026-02-13T12:00:00.000Z")
        assert driver["movementStatus"] == "stationary"

        info = await client.info()
        assert info.name


@pytest.mark.asyncio
async def test_unreachable_server_raises_transport_error() -> None:
    config = SyncConfig(base_url="http://127.0.0.1:9/api", request_timeout=2.0)
    async with FleetClient(config) as client:
        with pytest.raises(FleetTransportError):
            await client.pull_snapshot()


@pytest.mark.asyncio
async def test_driver_and_manager_converge(tmp_path: Path) -> None:
    test_server, authoritative = _server()
    async with test_server:
        driver_config = _config(test_server, actor_id="USR-001", storage_dir=str(tmp_path / "driver"))
        manager_config = _config(test_server, actor_id="USR-900", role="manager")
        driver_clock = FakeClock()

        async with FleetClient(driver_config) as driver_client, FleetClient(manager_config) as manager_client:
            driver_store = LocalEntityStore.from_config(driver_config)
            driver_agent = SyncAgent(driver_config, driver_store, driver_client, clock=driver_clock)
            controller = DriverStateController(driver_store, agent=driver_agent, clock=driver_clock)

            manager_store = LocalEntityStore()
            manager_agent = SyncAgent(manager_config, manager_store, manager_client)

            assert await driver_agent.perform_full_sync() is True
            controller.seed_driver(lat=52.0, lng=4.0)
            await controller.update_location(52.01, 4.02, accuracy=4.0)
            assert await controller.toggle_route() is ToggleResult.STARTED
            await controller.update_fuel(55.0)
            await controller.report_issue("road_blocked", "critical", "tree on road")

            assert await manager_agent.perform_full_sync() is True
            assert await manager_agent.refresh_driver_locations() is True

            seen = manager_store.get_user("USR-001")
            assert seen is not None
            assert seen["movementStatus"] == "on-route"
            assert seen["fuelLevel"] == 55.0
            assert manager_store.get_driver_location("USR-001")["lat"] == 52.01
            assert [a["priority"] for a in manager_store.get_active_alerts()] == ["critical"]

            driver_clock.advance(5.0)
            assert await controller.toggle_route() is ToggleResult.ENDED
            await manager_agent.sync_once(force_pull=True)
            assert manager_store.get_user("USR-001")["movementStatus"] == "stationary"

            await driver_agent.stop()
            await manager_agent.stop()

    # The driver's store was persisted as it went.
    reopened = LocalEntityStore.from_config(driver_config)
    assert (tmp_path / "driver" / f"{driver_config.storage_prefix}users.json").is_file()
    assert reopened.get_user("USR-001")["movementStatus"] == "stationary"
    assert authoritative.get_driver("USR-001")["status"] == "available"
