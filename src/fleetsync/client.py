"""High-level async client for the fleet authoritative store API."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from fleetsync._api import drivers as _drivers_api
from fleetsync._api import records as _records_api
from fleetsync._api import sync as _sync_api
from fleetsync._transport import HttpTransport, Transport
from fleetsync.config import SyncConfig
from fleetsync.exceptions import FleetSyncError
from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.models.location import DriverLocation
from fleetsync.models.records import Collection
from fleetsync.models.route import Route
from fleetsync.models.wire import HealthReport, PushAck, ServerInfo, Snapshot, UpdateType

_logger = logging.getLogger(__name__)


class FleetClient:
    """Async client for the authoritative store.

    Usage::

        async with FleetClient(config) as client:
            snapshot = await client.pull_snapshot()

    A ready-made *transport* can be injected (tests, alternative stacks);
    otherwise an aiohttp session is created on enter and closed on exit
    unless *session* was supplied by the caller.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._owns_transport = transport is None

    @property
    def config(self) -> SyncConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetClient:
        if self._owns_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_transport:
            if not self._external_session and self._http_session is not None:
                await self._http_session.close()
                self._http_session = None
            self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise FleetSyncError("Client is not open; use 'async with FleetClient(...)'")
        return self._transport

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def pull_snapshot(self) -> Snapshot:
        return await _sync_api.fetch_snapshot(self._require_transport())

    async def push_snapshot(self, data: dict[str, Any], *, update_type: UpdateType = "partial") -> PushAck:
        return await _sync_api.push_snapshot(self._require_transport(), data, update_type=update_type)

    async def health(self) -> HealthReport:
        return await _sync_api.fetch_health(self._require_transport())

    async def info(self) -> ServerInfo:
        return await _sync_api.fetch_info(self._require_transport())

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    async def get_driver(self, driver_id: str) -> dict[str, Any]:
        return await _drivers_api.fetch_driver(self._require_transport(), driver_id)

    async def update_location(self, driver_id: str, location: DriverLocation) -> dict[str, Any]:
        return await _drivers_api.post_location(self._require_transport(), driver_id, location)

    async def get_driver_locations(self) -> dict[str, dict[str, Any]]:
        return await _drivers_api.fetch_driver_locations(self._require_transport())

    async def update_status(
        self,
        driver_id: str,
        *,
        movement_status: MovementStatus | None = None,
        status: DriverStatus | None = None,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await _drivers_api.post_status(
            self._require_transport(),
            driver_id,
            movement_status=movement_status,
            status=status,
            expected_version=expected_version,
        )

    async def update_fuel(
        self,
        driver_id: str,
        fuel_level: float,
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await _drivers_api.post_fuel(
            self._require_transport(), driver_id, fuel_level, expected_version=expected_version
        )

    async def complete_route(
        self,
        driver_id: str,
        *,
        completion_time: str,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await _drivers_api.post_route_completion(
            self._require_transport(),
            driver_id,
            completion_time=completion_time,
            expected_version=expected_version,
        )

    async def update_driver(
        self,
        driver_id: str,
        updates: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        return await _drivers_api.post_driver_update(
            self._require_transport(), driver_id, updates, expected_version=expected_version
        )

    async def get_driver_routes(self, driver_id: str) -> list[dict[str, Any]]:
        return await _drivers_api.fetch_driver_routes(self._require_transport(), driver_id)

    # ------------------------------------------------------------------
    # Routes / collections
    # ------------------------------------------------------------------

    async def upsert_route(self, route: Route, *, expected_version: int | None = None) -> dict[str, Any]:
        return await _records_api.post_route(self._require_transport(), route, expected_version=expected_version)

    async def add_collection(self, collection: Collection) -> dict[str, Any]:
        return await _records_api.post_collection(self._require_transport(), collection)
