from __future__ import annotations

import asyncio
from typing import Any

import pytest
from conftest import FakeClock, FakeFleetBackend, make_driver

from fleetsync.agent import PushOutcome, SyncAgent
from fleetsync.client import FleetClient
from fleetsync.config import SyncConfig
from fleetsync.controller import DriverStateController, ToggleResult
from fleetsync.exceptions import EntityNotFoundError, FleetConfigError, InvalidTransitionError
from fleetsync.models.driver import MovementStatus
from fleetsync.models.kinds import CollectionKind
from fleetsync.state.events import AlertRaised, DriverUpdated, Notice, RouteLifecycle
from fleetsync.state.store import LocalEntityStore


@pytest.fixture
def controller(
    agent: SyncAgent, store: LocalEntityStore, backend: FakeFleetBackend, clock: FakeClock
) -> DriverStateController:
    backend.server.apply_update({"users": [make_driver()]})
    controller = DriverStateController(store, "USR-001", agent=agent, clock=clock)
    controller.seed_driver(name="Dana Driver", username="usr-001", lat=52.0, lng=4.0)
    return controller


def _collect(agent: SyncAgent, event_type: type) -> list[Any]:
    seen: list[Any] = []
    agent.bus.subscribe(event_type, seen.append)
    return seen


# ----------------------------------------------------------------------
# Route toggle
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_toggle_within_debounce_window_is_rejected(
    controller: DriverStateController, agent: SyncAgent, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    notices = _collect(agent, Notice)

    assert await controller.toggle_route() is ToggleResult.STARTED
    clock.advance(0.5)
    assert await controller.toggle_route() is ToggleResult.REJECTED

    assert controller.movement_status is MovementStatus.ON_ROUTE
    assert backend.count("POST", "/driver/USR-001/status") == 1
    assert backend.count("POST", "/driver/USR-001/route-completion") == 0
    assert [n.title for n in notices] == ["Please Wait"]


@pytest.mark.asyncio
async def test_toggle_after_debounce_window_ends_route(
    controller: DriverStateController, agent: SyncAgent, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    updates = _collect(agent, DriverUpdated)
    lifecycle = _collect(agent, RouteLifecycle)

    assert await controller.toggle_route() is ToggleResult.STARTED
    clock.advance(3.0)
    assert await controller.toggle_route() is ToggleResult.ENDED

    assert controller.movement_status is MovementStatus.STATIONARY
    assert [(u.action, u.movement_status) for u in updates] == [
        ("start_route", MovementStatus.ON_ROUTE),
        ("end_route", MovementStatus.STATIONARY),
    ]
    assert [e.action for e in lifecycle] == ["start", "end"]
    assert backend.count("POST", "/driver/USR-001/route-completion") == 1
    driver = backend.server.get_driver("USR-001")
    assert driver["movementStatus"] == "stationary"
    assert driver["status"] == "available"


@pytest.mark.asyncio
async def test_toggle_while_processing_is_rejected(
    controller: DriverStateController, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    backend.delay = 0.01

    first = asyncio.create_task(controller.toggle_route())
    await asyncio.sleep(0)
    clock.advance(5.0)

    assert await controller.toggle_route() is ToggleResult.REJECTED
    assert await first is ToggleResult.STARTED
    assert backend.count("POST", "/driver/USR-001/status") == 1


@pytest.mark.asyncio
async def test_acknowledged_toggle_pulls_server_state(
    controller: DriverStateController, store: LocalEntityStore, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    backend.server.apply_update({"bins": [{"id": "BIN-042", "fill": 30}]})

    assert await controller.toggle_route() is ToggleResult.STARTED
    pulls_after_start = backend.count("GET", "/sync")
    assert pulls_after_start == 1
    assert [b["id"] for b in store.get(CollectionKind.BINS)] == ["BIN-042"]

    backend.server.apply_update({"routes": [{"id": "RT-7", "driverId": "USR-001", "status": "active"}]})
    clock.advance(3.0)
    assert await controller.toggle_route() is ToggleResult.ENDED

    assert backend.count("GET", "/sync") == pulls_after_start + 1
    assert [(r["id"], r["status"]) for r in store.get_routes()] == [("RT-7", "completed")]


@pytest.mark.asyncio
async def test_queued_toggle_does_not_pull(
    controller: DriverStateController, backend: FakeFleetBackend
) -> None:
    backend.online = False

    await controller.toggle_route()

    assert backend.count("GET", "/sync") == 0


@pytest.mark.asyncio
async def test_end_route_completes_open_routes_locally_and_on_server(
    controller: DriverStateController, store: LocalEntityStore, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    routes = [
        {"id": "RT-1", "driverId": "USR-001", "status": "active"},
        {"id": "RT-2", "driverId": "USR-001", "status": "in-progress"},
        {"id": "RT-3", "driverId": "USR-001", "status": "completed"},
        {"id": "RT-4", "driverId": "USR-002", "status": "pending"},
    ]
    store.set(CollectionKind.ROUTES, routes)
    backend.server.apply_update({"routes": routes})

    await controller.toggle_route()
    clock.advance(3.0)
    await controller.toggle_route()

    ended_at = store.get_user("USR-001")["routeEndTime"]
    local = {r["id"]: r for r in store.get_routes()}
    assert [local[i]["status"] for i in ("RT-1", "RT-2", "RT-3", "RT-4")] == [
        "completed",
        "completed",
        "completed",
        "pending",
    ]
    assert local["RT-1"]["completedAt"] == ended_at
    assert local["RT-1"]["completedBy"] == "USR-001"
    assert "completedAt" not in local["RT-3"]

    server = {r["id"]: r for r in backend.server.snapshot()["routes"]}
    assert [server[i]["status"] for i in ("RT-1", "RT-2", "RT-4")] == ["completed", "completed", "pending"]
    assert server["RT-2"]["completedAt"] == ended_at


@pytest.mark.asyncio
async def test_failed_sync_keeps_optimistic_local_state(
    controller: DriverStateController, agent: SyncAgent, store: LocalEntityStore, backend: FakeFleetBackend
) -> None:
    backend.online = False

    assert await controller.toggle_route() is ToggleResult.STARTED

    assert store.get_user("USR-001")["movementStatus"] == "on-route"
    assert store.get_driver_location("USR-001")["movementStatus"] == "on-route"
    assert [p.op for p in agent.pending] == ["status"]
    assert backend.server.get_driver("USR-001")["movementStatus"] == "stationary"


# ----------------------------------------------------------------------
# Breaks / shift
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_break_and_shift_transitions(controller: DriverStateController, backend: FakeFleetBackend) -> None:
    assert await controller.take_break() is PushOutcome.SENT
    assert backend.server.get_driver("USR-001")["movementStatus"] == "on-break"

    with pytest.raises(InvalidTransitionError):
        await controller.start_route()

    await controller.end_break()
    await controller.end_shift()
    driver = controller.driver
    assert driver is not None
    assert driver.movement_status is MovementStatus.OFF_DUTY
    assert driver.status == "inactive"
    assert backend.server.get_driver("USR-001")["movementStatus"] == "off-duty"

    with pytest.raises(InvalidTransitionError):
        await controller.take_break()

    reseeded = controller.seed_driver()
    assert reseeded.movement_status is MovementStatus.STATIONARY
    assert reseeded.status == "active"


@pytest.mark.asyncio
async def test_unknown_local_driver_raises(store: LocalEntityStore) -> None:
    controller = DriverStateController(store, "USR-404")

    with pytest.raises(EntityNotFoundError):
        await controller.start_route()


@pytest.mark.asyncio
async def test_controller_takes_driver_and_debounce_from_agent_config(
    store: LocalEntityStore, backend: FakeFleetBackend, clock: FakeClock
) -> None:
    backend.server.apply_update({"users": [make_driver()]})
    config = SyncConfig(base_url="http://fleet.test/api", actor_id="USR-001", route_debounce=5.0)
    agent = SyncAgent(config, store, FleetClient(config, transport=backend), clock=clock)
    controller = DriverStateController(store, agent=agent, clock=clock)
    controller.seed_driver()

    assert controller.driver_id == "USR-001"
    assert await controller.toggle_route() is ToggleResult.STARTED
    clock.advance(3.0)
    assert await controller.toggle_route() is ToggleResult.REJECTED
    clock.advance(3.0)
    assert await controller.toggle_route() is ToggleResult.ENDED


def test_controller_needs_a_driver_id(store: LocalEntityStore, backend: FakeFleetBackend) -> None:
    config = SyncConfig(base_url="http://fleet.test/api")
    agent = SyncAgent(config, store, FleetClient(config, transport=backend))

    with pytest.raises(FleetConfigError):
        DriverStateController(store, agent=agent)
    with pytest.raises(FleetConfigError):
        DriverStateController(store)


@pytest.mark.asyncio
async def test_controller_without_agent_updates_store_only(clock: FakeClock) -> None:
    store = LocalEntityStore()
    controller = DriverStateController(store, "USR-009", clock=clock)
    controller.seed_driver(name="Solo")

    assert await controller.toggle_route() is ToggleResult.STARTED
    clock.advance(2.0)
    assert await controller.toggle_route() is ToggleResult.ENDED
    assert store.get_user("USR-009")["lastRouteCompletion"] is not None


# ----------------------------------------------------------------------
# Fuel / location / issues
# ----------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("level", [150, -5, float("nan"), True])
async def test_invalid_fuel_level_is_rejected(
    controller: DriverStateController, store: LocalEntityStore, backend: FakeFleetBackend, level: Any
) -> None:
    with pytest.raises(ValueError):
        await controller.update_fuel(level)

    assert store.get_user("USR-001")["fuelLevel"] == 75.0
    assert backend.count("POST", "/driver/USR-001/fuel") == 0


@pytest.mark.asyncio
async def test_fuel_update_publishes_new_value(
    controller: DriverStateController, agent: SyncAgent, store: LocalEntityStore, backend: FakeFleetBackend
) -> None:
    updates = _collect(agent, DriverUpdated)

    assert await controller.update_fuel(42.5) is PushOutcome.SENT

    assert [u.fuel_level for u in updates] == [42.5]
    user = store.get_user("USR-001")
    assert user["fuelLevel"] == 42.5
    assert user["lastFuelUpdate"] is not None
    assert backend.server.get_driver("USR-001")["fuelLevel"] == 42.5


@pytest.mark.asyncio
async def test_location_update_reaches_server(
    controller: DriverStateController, store: LocalEntityStore, backend: FakeFleetBackend
) -> None:
    await controller.update_location(52.001, 4.001, accuracy=5.0)

    assert store.get_driver_location("USR-001")["lat"] == 52.001
    location = backend.server.snapshot()["driverLocations"]["USR-001"]
    assert (location["lat"], location["lng"], location["accuracy"]) == (52.001, 4.001, 5.0)


@pytest.mark.asyncio
@pytest.mark.parametrize(("priority", "alert_priority"), [("critical", "critical"), ("medium", "high")])
async def test_report_issue_raises_alert(
    controller: DriverStateController,
    agent: SyncAgent,
    store: LocalEntityStore,
    backend: FakeFleetBackend,
    priority: str,
    alert_priority: str,
) -> None:
    raised = _collect(agent, AlertRaised)

    issue = await controller.report_issue("vehicle_breakdown", priority, "engine smoke")

    assert issue.id.startswith("ISS-")
    assert [i["id"] for i in store.get(CollectionKind.ISSUES)] == [issue.id]
    alerts = store.get_active_alerts()
    assert len(alerts) == 1
    assert alerts[0]["priority"] == alert_priority
    assert alerts[0]["relatedId"] == issue.id
    assert alerts[0]["message"] == "Dana Driver reported vehicle breakdown: engine smoke"
    assert [r.alert["id"] for r in raised] == [alerts[0]["id"]]

    server = backend.server.snapshot()
    assert [a["id"] for a in server["alerts"]] == [alerts[0]["id"]]
    assert [i["id"] for i in server["issues"]] == [issue.id]
