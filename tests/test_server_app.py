from __future__ import annotations

from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import make_driver

from fleetsync.server import AuthoritativeStore, create_app


class _RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.started = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def publish(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))


def _seeded_store() -> AuthoritativeStore:
    store = AuthoritativeStore()
    store.apply_update(
        {
            "users": [make_driver("USR-001"), make_driver("USR-002"), {"id": "USR-900", "type": "manager"}],
            "routes": [
                {"id": "RT-1", "driverId": "USR-001", "status": "active"},
                {"id": "RT-2", "driverId": "USR-001", "status": "pending"},
                {"id": "RT-3", "driverId": "USR-002", "status": "in-progress"},
            ],
        }
    )
    return store


@pytest.mark.asyncio
async def test_snapshot_get_and_partial_post() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        resp = await client.get("/api/sync")
        body = await resp.json()
        assert resp.status == 200
        assert body["success"] is True
        assert [u["id"] for u in body["data"]["users"]] == ["USR-001", "USR-002", "USR-900"]
        assert body["data"]["users"][0]["version"] == 1

        resp = await client.post(
            "/api/sync",
            json={"data": {"bins": [{"id": "BIN-001", "fill": 40}], "lastUpdate": "ignored"}, "updateType": "partial"},
        )
        assert resp.status == 200
        assert (await resp.json())["success"] is True

    snapshot = store.snapshot()
    assert snapshot["bins"] == [{"id": "BIN-001", "fill": 40}]
    assert len(snapshot["users"]) == 3
    assert snapshot["lastUpdate"] != "ignored"


@pytest.mark.asyncio
async def test_malformed_requests_answer_400() -> None:
    async with TestClient(TestServer(create_app(store=_seeded_store()))) as client:
        resp = await client.post("/api/sync", data="not json", headers={"content-type": "application/json"})
        assert resp.status == 400
        assert (await resp.json())["code"] == "bad_request"

        resp = await client.post("/api/sync", json={"data": [], "updateType": "partial"})
        assert resp.status == 400

        resp = await client.post("/api/sync", json={"data": {}, "updateType": "merge"})
        assert resp.status == 400

        resp = await client.post("/api/driver/USR-001/status", json={"movementStatus": "flying"})
        assert resp.status == 400


@pytest.mark.asyncio
async def test_unknown_driver_answers_404() -> None:
    async with TestClient(TestServer(create_app(store=_seeded_store()))) as client:
        for method, path, payload in (
            ("GET", "/api/driver/USR-404", None),
            ("POST", "/api/driver/USR-404/fuel", {"fuelLevel": 10}),
            ("POST", "/api/driver/USR-404/location", {"lat": 1, "lng": 2}),
            ("POST", "/api/driver/USR-900/route-completion", {}),
        ):
            resp = await client.request(method, path, json=payload)
            body = await resp.json()
            assert resp.status == 404, path
            assert body == {"success": False, "error": body["error"], "code": "not_found"}


@pytest.mark.asyncio
async def test_route_completion_cascades_atomically() -> None:
    store = _seeded_store()
    publisher = _RecordingPublisher()
    app = create_app(store=store, publisher=publisher)  # type: ignore[arg-type]
    async with TestClient(TestServer(app)) as client:
        assert publisher.started is True
        await client.post("/api/driver/USR-001/status", json={"movementStatus": "on-route", "status": "active"})

        resp = await client.post(
            "/api/driver/USR-001/route-completion",
            json={"completionTime": "2026-02-13T12:30:00.000Z", "status": "available", "movementStatus": "stationary"},
        )
        body = await resp.json()

    assert resp.status == 200
    assert sorted(body["completedRoutes"]) == ["RT-1", "RT-2"]
    assert body["driver"]["movementStatus"] == "stationary"
    assert body["driver"]["status"] == "available"

    routes = {r["id"]: r for r in store.snapshot()["routes"]}
    assert routes["RT-1"]["status"] == "completed"
    assert routes["RT-2"]["completedAt"] == "2026-02-13T12:30:00.000Z"
    assert routes["RT-2"]["completedBy"] == "USR-001"
    assert routes["RT-3"]["status"] == "in-progress"
    assert [e for e, _ in publisher.events] == ["driver_status", "route_completion"]
    assert publisher.events[-1][1]["driverId"] == "USR-001"


@pytest.mark.asyncio
async def test_stale_expected_version_answers_409() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        resp = await client.post("/api/driver/USR-001/fuel", json={"fuelLevel": 50, "expectedVersion": 1})
        body = await resp.json()
        assert resp.status == 200
        assert body["version"] == 2

        resp = await client.post("/api/driver/USR-001/fuel", json={"fuelLevel": 20, "expectedVersion": 1})
        assert resp.status == 409
        assert (await resp.json())["code"] == "version_conflict"

        resp = await client.post("/api/driver/USR-001/fuel", json={"fuelLevel": 20, "expectedVersion": "2"})
        assert resp.status == 400

    assert store.get_driver("USR-001")["fuelLevel"] == 50.0


@pytest.mark.asyncio
async def test_fuel_is_clamped_server_side() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        resp = await client.post("/api/driver/USR-002/fuel", json={"fuelLevel": 180})
        assert (await resp.json())["fuelLevel"] == 100.0


@pytest.mark.asyncio
async def test_route_upsert_refuses_backward_moves() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        resp = await client.post("/api/routes", json={"id": "RT-3", "driverId": "USR-002", "status": "active"})
        assert resp.status == 409
        assert (await resp.json())["code"] == "invalid_transition"

        resp = await client.post("/api/routes", json={"id": "RT-3", "driverId": "USR-002", "status": "completed"})
        assert resp.status == 200

        resp = await client.post("/api/routes", json={"id": "RT-9", "driverId": "USR-002", "binIds": ["B1", "B1"]})
        route = (await resp.json())["route"]
        assert route["binIds"] == ["B1"]
        assert route["version"] == 1

        resp = await client.get("/api/driver/USR-002/routes")
        assert [r["id"] for r in (await resp.json())["routes"]] == ["RT-9"]


@pytest.mark.asyncio
async def test_collections_are_idempotent_by_id() -> None:
    store = _seeded_store()
    payload = {"id": "COL-1", "binId": "BIN-001", "driverId": "USR-001", "weight": 4.5}
    async with TestClient(TestServer(create_app(store=store))) as client:
        first = await client.post("/api/collections", json=payload)
        second = await client.post("/api/collections", json={**payload, "weight": 99})
        assert (await first.json())["collection"] == (await second.json())["collection"]

        resp = await client.post("/api/collections", json={"binId": "BIN-002", "driverId": "USR-001"})
        assert (await resp.json())["collection"]["id"].startswith("COL-")

    assert [c["id"] for c in store.snapshot()["collections"]][0] == "COL-1"
    assert len(store.snapshot()["collections"]) == 2


@pytest.mark.asyncio
async def test_driver_locations_report() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        await client.post("/api/driver/USR-001/location", json={"latitude": 52.1, "longitude": 4.3, "accuracy": 7})

        resp = await client.get("/api/driver/locations")
        body = await resp.json()

    assert body["count"] == 1
    record = body["drivers"][0]
    assert record["id"] == "USR-001"
    assert record["location"] == {"latitude": 52.1, "longitude": 4.3, "accuracy": 7.0}
    assert record["movementStatus"] == "stationary"


@pytest.mark.asyncio
async def test_driver_update_keeps_id_and_validates_enums() -> None:
    store = _seeded_store()
    async with TestClient(TestServer(create_app(store=store))) as client:
        resp = await client.post("/api/driver/USR-001/update", json={"id": "HIJACK", "name": "Renamed", "fuelLevel": -3})
        driver = (await resp.json())["driver"]
        assert driver["id"] == "USR-001"
        assert driver["name"] == "Renamed"
        assert driver["fuelLevel"] == 0.0

        resp = await client.post("/api/driver/USR-001/update", json={"status": "sleeping"})
        assert resp.status == 400


@pytest.mark.asyncio
async def test_health_and_info() -> None:
    async with TestClient(TestServer(create_app(store=_seeded_store()))) as client:
        health = await (await client.get("/api/health")).json()
        info = await (await client.get("/api/info")).json()

    assert health["status"] == "OK"
    assert health["dataStatus"]["users"] == 3
    assert health["dataStatus"]["routes"] == 3
    assert "lastUpdate" in health["dataStatus"]
    assert health["uptime"] >= 0
    assert set(info) == {"name", "version"}
