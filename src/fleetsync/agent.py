"""Client-side sync agent.

Keeps a :class:`LocalEntityStore` consistent with the authoritative store:
an adaptive polling loop pulls and merges snapshots, local writes are
pushed either as partial snapshots or through targeted per-entity
endpoints, and anything that cannot be delivered waits in an ordered
offline queue until connectivity returns.

Network and serialization errors stop here. Callers (the driver
controller, presentation layers) get a :class:`PushOutcome` and events on
the :class:`EventBus`, never an exception.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from fleetsync._constants import HEALTH_EXCELLENT_BELOW_S, HEALTH_GOOD_BELOW_S
from fleetsync._mqtt import ChangeEvent, FleetMqttRuntime, MqttBroker
from fleetsync.client import FleetClient
from fleetsync.config import SyncConfig
from fleetsync.exceptions import (
    EntityNotFoundError,
    FleetApiError,
    FleetSerializationError,
    FleetTransportError,
)
from fleetsync.models._base import utcnow_iso
from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.models.kinds import CollectionKind, CollectionShape
from fleetsync.models.location import DriverLocation
from fleetsync.models.records import Collection
from fleetsync.models.route import Route
from fleetsync.models.wire import UpdateType
from fleetsync.state.events import (
    ConnectionHealth,
    ConnectionHealthChanged,
    DataChanged,
    EventBus,
    Notice,
    NoticeLevel,
    RemoteChange,
    SyncWarning,
)
from fleetsync.state.fingerprint import fingerprint, store_fingerprint
from fleetsync.state.policy import merge_collection
from fleetsync.state.store import LocalEntityStore, StoreWrite, WriteOrigin

_logger = logging.getLogger(__name__)

# Collections delivered through their own per-entity endpoints. Local writes
# to them are never pushed as snapshot fragments.
TARGETED_KINDS: frozenset[CollectionKind] = frozenset(
    {CollectionKind.ROUTES, CollectionKind.COLLECTIONS, CollectionKind.DRIVER_LOCATIONS}
)

# Collections whose local writes are pushed as partial snapshots.
SNAPSHOT_PUSH_KINDS: frozenset[CollectionKind] = frozenset(CollectionKind) - TARGETED_KINDS - {CollectionKind.USERS}


def classify_health(response_time: float | None) -> ConnectionHealth:
    """Map a pull round trip in seconds to a health class; ``None`` means failed."""
    if response_time is None:
        return ConnectionHealth.POOR
    if response_time < HEALTH_EXCELLENT_BELOW_S:
        return ConnectionHealth.EXCELLENT
    if response_time < HEALTH_GOOD_BELOW_S:
        return ConnectionHealth.GOOD
    return ConnectionHealth.SLOW


class PushOutcome(StrEnum):
    SENT = "sent"
    QUEUED = "queued"
    REJECTED = "rejected"


class PushOp(StrEnum):
    SNAPSHOT = "snapshot"
    STATUS = "status"
    FUEL = "fuel"
    LOCATION = "location"
    ROUTE_COMPLETION = "route-completion"
    DRIVER_UPDATE = "driver-update"
    ROUTE = "route"
    COLLECTION = "collection"


@dataclass(frozen=True)
class PendingPush:
    """One not-yet-acknowledged write, replayable as-is."""

    op: PushOp
    payload: dict[str, Any]
    driver_id: str | None = None
    update_type: UpdateType = "partial"
    queued_at: str = field(default_factory=utcnow_iso)


class SyncStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool
    online: bool
    is_syncing: bool
    last_sync: str | None
    last_response_time: float | None
    pending_count: int
    retry_count: int
    health: ConnectionHealth
    interval: float


def _entity_ids(value: Any) -> set[str]:
    if not isinstance(value, list):
        return set()
    return {e["id"] for e in value if isinstance(e, dict) and isinstance(e.get("id"), str)}


class SyncAgent:
    """Adaptive-interval reconciliation loop between a local store and the server.

    Parameters
    ----------
    config : SyncConfig
        Intervals, retry bound and role.
    store : LocalEntityStore
        The store to keep in sync. The agent registers itself as a write
        observer after the persistence observer.
    client : FleetClient
        An open client for the authoritative store.
    bus : EventBus, optional
        Where data-changed, health and warning events are published.
    clock : callable, optional
        Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: LocalEntityStore,
        client: FleetClient,
        *,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._store = store
        self._client = client
        self._bus = bus or EventBus()
        self._clock = clock

        self._enabled = True
        self._online = True
        self._is_syncing = False
        self._is_replaying = False
        self._first_sync_done = False

        self._last_activity: float | None = None
        self._last_pull_at: float | None = None
        self._last_pull_fingerprint: str | None = None
        self._last_sync: str | None = None
        self._last_response_time: float | None = None
        self._health = ConnectionHealth.UNKNOWN
        self._retry_count = 0

        self._pending: list[PendingPush] = []
        self._dirty: set[CollectionKind] = set()
        self._server_ids: dict[CollectionKind, set[str]] = {}
        self._unconfirmed: dict[CollectionKind, set[str]] = {}

        self._wake = asyncio.Event()
        self._pull_requested = False
        self._reschedule_only = False
        self._tasks: list[asyncio.Task[None]] = []
        self._mqtt_runtime: FleetMqttRuntime | None = None

        self._remove_observer = store.add_observer(self._on_store_write)

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> LocalEntityStore:
        return self._store

    @property
    def pending(self) -> list[PendingPush]:
        return list(self._pending)

    @property
    def health(self) -> ConnectionHealth:
        return self._health

    @property
    def is_online(self) -> bool:
        return self._online

    # ------------------------------------------------------------------
    # Activity and scheduling
    # ------------------------------------------------------------------

    def _is_active(self) -> bool:
        if self._last_activity is None:
            return False
        return self._clock() - self._last_activity < self._config.activity_window

    def current_interval(self) -> float:
        """Poll period: short while there was recent local activity."""
        return self._config.active_interval if self._is_active() else self._config.quiet_interval

    def mark_activity(self) -> None:
        was_active = self._is_active()
        self._last_activity = self._clock()
        if not was_active and not self._pull_requested:
            # Re-arm the loop timer with the shorter interval.
            self._reschedule_only = True
            self._wake.set()

    def request_pull(self) -> None:
        """Ask the loop for an immediate sync round that always pulls."""
        self._pull_requested = True
        self._reschedule_only = False
        self._wake.set()

    def _on_store_write(self, write: StoreWrite) -> None:
        if write.origin is not WriteOrigin.LOCAL:
            return
        self.mark_activity()
        kind = write.kind
        if kind.layout.shape is CollectionShape.LIST and kind is not CollectionKind.USERS:
            fresh = _entity_ids(write.value) - self._server_ids.get(kind, set())
            if fresh:
                self._unconfirmed.setdefault(kind, set()).update(fresh)
        if kind in SNAPSHOT_PUSH_KINDS:
            self._dirty.add(kind)

    def _confirm(self, kind: CollectionKind, ids: set[str] | None = None) -> None:
        pending = self._unconfirmed.get(kind)
        if not pending:
            return
        if ids is None:
            pending.clear()
        else:
            pending.difference_update(ids)

    # ------------------------------------------------------------------
    # Health / failures
    # ------------------------------------------------------------------

    def _set_health(self, health: ConnectionHealth, response_time: float | None = None) -> None:
        self._last_response_time = response_time
        if health is self._health:
            return
        self._health = health
        self._bus.publish(ConnectionHealthChanged(health=health, response_time=response_time))

    def _record_success(self) -> None:
        self._retry_count = 0
        self._last_sync = utcnow_iso()

    def _record_failure(self, what: str, exc: Exception) -> None:
        self._set_health(ConnectionHealth.POOR)
        self._retry_count += 1
        _logger.debug("%s failed (%d/%d): %s", what, self._retry_count, self._config.max_retries, exc)
        if self._retry_count >= self._config.max_retries:
            _logger.warning("Sync failed %d times; operating in offline mode", self._retry_count)
            self._bus.publish(
                SyncWarning(
                    title="Connection Issue",
                    message="Operating in offline mode. Changes are saved locally.",
                )
            )
            self._retry_count = 0

    # ------------------------------------------------------------------
    # Pull / merge
    # ------------------------------------------------------------------

    def local_fingerprint(self) -> str:
        return store_fingerprint(self._store.snapshot())

    def _should_pull(self, force: bool) -> bool:
        if force or not self._first_sync_done or self._last_pull_fingerprint is None:
            return True
        if self.local_fingerprint() != self._last_pull_fingerprint:
            return True
        force_after = self._config.force_pull_after
        return bool(
            force_after > 0 and self._last_pull_at is not None and self._clock() - self._last_pull_at >= force_after
        )

    async def _pull(self) -> bool:
        started = self._clock()
        try:
            snapshot = await self._client.pull_snapshot()
        except (FleetTransportError, FleetApiError) as exc:
            self._record_failure("Pull", exc)
            return False
        elapsed = self._clock() - started
        self._set_health(classify_health(elapsed), elapsed)
        self._last_pull_at = self._clock()
        self._record_success()

        to_push = self.merge_snapshot(snapshot.data)
        if to_push:
            _logger.info("Server is missing local entities; pushing %s", ", ".join(sorted(to_push)))
            await self._push_snapshot(to_push, "partial")
        self._last_pull_fingerprint = self.local_fingerprint()
        return True

    def merge_snapshot(self, data: dict[str, Any]) -> dict[str, Any]:
        """Merge a pulled snapshot into the local store.

        Missing or malformed collections are skipped. Publishes
        :class:`DataChanged` for collections whose fingerprint moved and
        returns the collections that should be pushed back upstream.
        """
        changed: list[CollectionKind] = []
        to_push: dict[str, Any] = {}
        for kind in CollectionKind:
            key = str(kind)
            if key not in data:
                continue
            server_value = data[key]
            local_value = self._store.get(kind)
            outcome = merge_collection(kind, local_value, server_value, self._unconfirmed.get(kind, ()))
            if outcome is None:
                _logger.debug("Skipping malformed %s collection in snapshot", key)
                continue

            server_ids = _entity_ids(server_value)
            self._server_ids[kind] = server_ids
            self._confirm(kind, server_ids)

            if outcome.value != local_value:
                self._store.set(kind, outcome.value, origin=WriteOrigin.SYNC)
                if fingerprint(outcome.value) != fingerprint(local_value):
                    changed.append(kind)
            if outcome.push_local and kind not in TARGETED_KINDS:
                to_push[key] = outcome.value

        if changed:
            _logger.info("Pull changed %s", ", ".join(str(k) for k in changed))
            self._bus.publish(DataChanged(collections=tuple(changed), source="pull"))
        return to_push

    # ------------------------------------------------------------------
    # Push / offline queue
    # ------------------------------------------------------------------

    async def _send(self, item: PendingPush) -> dict[str, Any]:
        client = self._client
        payload = item.payload
        if item.op is PushOp.SNAPSHOT:
            ack = await client.push_snapshot(payload, update_type=item.update_type)
            return ack.model_dump()
        driver_id = item.driver_id or ""
        if item.op is PushOp.STATUS:
            movement = payload.get("movementStatus")
            status = payload.get("status")
            return await client.update_status(
                driver_id,
                movement_status=MovementStatus(movement) if movement else None,
                status=DriverStatus(status) if status else None,
            )
        if item.op is PushOp.FUEL:
            return await client.update_fuel(driver_id, float(payload["fuelLevel"]))
        if item.op is PushOp.LOCATION:
            return await client.update_location(driver_id, DriverLocation.model_validate(payload))
        if item.op is PushOp.ROUTE_COMPLETION:
            return await client.complete_route(driver_id, completion_time=payload["completionTime"])
        if item.op is PushOp.DRIVER_UPDATE:
            return await client.update_driver(driver_id, payload)
        if item.op is PushOp.ROUTE:
            return await client.upsert_route(Route.model_validate(payload))
        if item.op is PushOp.COLLECTION:
            return await client.add_collection(Collection.model_validate(payload))
        raise ValueError(f"unknown push op {item.op!r}")

    def _after_send(self, item: PendingPush) -> None:
        if item.op is PushOp.SNAPSHOT:
            for key in item.payload:
                kind = CollectionKind.parse(key)
                if kind is not None:
                    self._confirm(kind)
        elif item.op is PushOp.ROUTE:
            self._confirm(CollectionKind.ROUTES, {item.payload.get("id", "")})
        elif item.op is PushOp.COLLECTION:
            self._confirm(CollectionKind.COLLECTIONS, {item.payload.get("id", "")})

    @staticmethod
    def _check_payload(item: PendingPush) -> None:
        """Raise ``ValidationError``/``ValueError`` for payloads the server could never accept."""
        payload = item.payload
        if item.op is PushOp.ROUTE:
            Route.model_validate(payload)
        elif item.op is PushOp.COLLECTION:
            Collection.model_validate(payload)
        elif item.op is PushOp.LOCATION:
            DriverLocation.model_validate(payload)
        elif item.op is PushOp.FUEL:
            float(payload["fuelLevel"])
        elif item.op is PushOp.STATUS:
            if payload.get("movementStatus"):
                MovementStatus(payload["movementStatus"])
            if payload.get("status"):
                DriverStatus(payload["status"])
        elif item.op is PushOp.ROUTE_COMPLETION and not payload.get("completionTime"):
            raise ValueError("route completion needs a completionTime")

    def _enqueue(self, item: PendingPush) -> PushOutcome:
        self._pending.append(item)
        _logger.debug("Queued %s push (%d pending)", item.op, len(self._pending))
        return PushOutcome.QUEUED

    async def _dispatch(self, item: PendingPush) -> PushOutcome:
        """Send now, or queue when offline, behind older pending writes, or failing."""
        try:
            self._check_payload(item)
        except (ValidationError, ValueError, KeyError, TypeError) as exc:
            _logger.warning("%s payload rejected before sending: %s", item.op, exc)
            self._bus.publish(Notice(title="Invalid data", message=str(exc), level=NoticeLevel.ERROR))
            return PushOutcome.REJECTED
        if not self._enabled or not self._online or self._pending:
            outcome = self._enqueue(item)
            if self._online and self._enabled:
                self.request_pull()
            return outcome
        try:
            await self._send(item)
        except EntityNotFoundError as exc:
            _logger.warning("%s rejected: %s", item.op, exc)
            self._bus.publish(Notice(title="Not found", message=str(exc), level=NoticeLevel.ERROR))
            return PushOutcome.REJECTED
        except FleetApiError as exc:
            _logger.warning("%s rejected by server: %s", item.op, exc)
            self.request_pull()
            return PushOutcome.REJECTED
        except (FleetSerializationError, ValidationError, ValueError) as exc:
            _logger.warning("%s payload could not be sent: %s", item.op, exc)
            return PushOutcome.REJECTED
        except FleetTransportError as exc:
            self._record_failure(f"{item.op} push", exc)
            return self._enqueue(item)
        self._after_send(item)
        self._record_success()
        return PushOutcome.SENT

    async def _push_snapshot(self, data: dict[str, Any], update_type: UpdateType) -> PushOutcome:
        return await self._dispatch(PendingPush(op=PushOp.SNAPSHOT, payload=data, update_type=update_type))

    async def process_pending(self) -> int:
        """Replay the offline queue in order; returns how many were delivered.

        Stops at the first connectivity failure and keeps that entry and
        everything behind it. Entries the server rejects are dropped.
        """
        if self._is_replaying or not self._pending or not self._online:
            return 0
        self._is_replaying = True
        delivered = 0
        try:
            while self._pending and self._online:
                item = self._pending[0]
                try:
                    await self._send(item)
                except FleetTransportError as exc:
                    self._record_failure(f"Replay of {item.op}", exc)
                    break
                except (FleetApiError, FleetSerializationError, ValidationError, ValueError, KeyError) as exc:
                    _logger.warning("Dropping queued %s push: %s", item.op, exc)
                    self._pending.pop(0)
                    continue
                self._pending.pop(0)
                self._after_send(item)
                self._record_success()
                delivered += 1
        finally:
            self._is_replaying = False
        if delivered:
            _logger.info("Replayed %d pending push(es); %d remaining", delivered, len(self._pending))
        return delivered

    async def flush_dirty(self) -> PushOutcome | None:
        """Push every locally modified snapshot collection as one partial update."""
        if not self._dirty:
            return None
        kinds = sorted(self._dirty)
        self._dirty.clear()
        data = {str(kind): self._store.get(kind) for kind in kinds}
        return await self._push_snapshot(data, "partial")

    # ------------------------------------------------------------------
    # Sync rounds
    # ------------------------------------------------------------------

    async def sync_once(self, *, force_pull: bool = False) -> bool:
        """Run one sync round; returns whether a pull happened.

        Skipped entirely while another round is in flight.
        """
        if not self._enabled or self._is_syncing:
            return False
        self._is_syncing = True
        try:
            if not self._online:
                return False
            if not self._first_sync_done:
                return await self._full_sync()
            await self.process_pending()
            await self.flush_dirty()
            if not self._should_pull(force_pull):
                _logger.debug("Local state unchanged since last pull; skipping")
                return False
            return await self._pull()
        finally:
            self._is_syncing = False

    async def _full_sync(self) -> bool:
        if not await self._pull():
            return False
        self._first_sync_done = True
        await self.process_pending()
        self._dirty.clear()
        await self._push_snapshot(self._store.export_data(), "full")
        return True

    async def perform_full_sync(self) -> bool:
        """Pull, merge, then push the whole local store."""
        if not self._enabled or self._is_syncing or not self._online:
            return False
        self._is_syncing = True
        try:
            return await self._full_sync()
        finally:
            self._is_syncing = False

    # ------------------------------------------------------------------
    # Targeted syncs (used by the driver controller)
    # ------------------------------------------------------------------

    async def sync_driver_status(
        self,
        driver_id: str,
        *,
        movement_status: MovementStatus | None = None,
        status: DriverStatus | None = None,
    ) -> PushOutcome:
        payload: dict[str, Any] = {}
        if movement_status is not None:
            payload["movementStatus"] = str(movement_status)
        if status is not None:
            payload["status"] = str(status)
        return await self._dispatch(PendingPush(op=PushOp.STATUS, payload=payload, driver_id=driver_id))

    async def sync_fuel(self, driver_id: str, fuel_level: float) -> PushOutcome:
        return await self._dispatch(
            PendingPush(op=PushOp.FUEL, payload={"fuelLevel": fuel_level}, driver_id=driver_id)
        )

    async def sync_location(self, driver_id: str, location: dict[str, Any]) -> PushOutcome:
        return await self._dispatch(PendingPush(op=PushOp.LOCATION, payload=dict(location), driver_id=driver_id))

    async def complete_route(self, driver_id: str, completion_time: str) -> PushOutcome:
        return await self._dispatch(
            PendingPush(
                op=PushOp.ROUTE_COMPLETION,
                payload={"completionTime": completion_time},
                driver_id=driver_id,
            )
        )

    async def sync_driver_update(self, driver_id: str, updates: dict[str, Any]) -> PushOutcome:
        return await self._dispatch(PendingPush(op=PushOp.DRIVER_UPDATE, payload=dict(updates), driver_id=driver_id))

    async def sync_route(self, route: dict[str, Any]) -> PushOutcome:
        return await self._dispatch(PendingPush(op=PushOp.ROUTE, payload=dict(route)))

    async def sync_collection(self, collection: dict[str, Any]) -> PushOutcome:
        return await self._dispatch(PendingPush(op=PushOp.COLLECTION, payload=dict(collection)))

    async def get_driver_routes(self, driver_id: str) -> list[dict[str, Any]]:
        """Server view of a driver's open routes, or the local one when unreachable."""
        if self._enabled and self._online:
            try:
                return await self._client.get_driver_routes(driver_id)
            except (FleetTransportError, FleetApiError) as exc:
                _logger.debug("Falling back to local routes for %s: %s", driver_id, exc)
        return self._store.get_driver_routes(driver_id)

    # ------------------------------------------------------------------
    # Observer location fan-out
    # ------------------------------------------------------------------

    async def refresh_driver_locations(self) -> bool:
        """Pull the driver-locations endpoint into the local location map."""
        try:
            locations = await self._client.get_driver_locations()
        except (FleetTransportError, FleetApiError) as exc:
            _logger.debug("Driver locations poll failed: %s", exc)
            return False
        if not locations:
            return False
        current = self._store.get(CollectionKind.DRIVER_LOCATIONS)
        merged = {**current, **locations}
        if merged == current:
            return False
        self._store.set(CollectionKind.DRIVER_LOCATIONS, merged, origin=WriteOrigin.SYNC)
        if fingerprint(merged) != fingerprint(current):
            self._bus.publish(DataChanged(collections=(CollectionKind.DRIVER_LOCATIONS,), source="locations"))
        return True

    # ------------------------------------------------------------------
    # Connectivity, status and control
    # ------------------------------------------------------------------

    def set_online(self, online: bool) -> None:
        """Transport connectivity signal."""
        if online == self._online:
            return
        self._online = online
        if online:
            _logger.info("Connection restored; %d pending push(es)", len(self._pending))
            self._bus.publish(Notice(title="Back Online", message="Syncing data...", level=NoticeLevel.SUCCESS))
            self.request_pull()
        else:
            _logger.warning("Connection lost; operating on local data")
            self._set_health(ConnectionHealth.POOR)
            self._bus.publish(SyncWarning(title="Connection Lost", message="Working offline. Data will sync when online."))

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        _logger.info("Server sync %s", "enabled" if enabled else "disabled")
        if enabled:
            self.request_pull()

    async def check_server(self) -> bool:
        """Probe ``/health``; decides between server sync and local-only mode."""
        started = self._clock()
        try:
            report = await self._client.health()
        except (FleetTransportError, FleetApiError) as exc:
            _logger.warning("Sync server unavailable, running on local data: %s", exc)
            self._set_health(ConnectionHealth.POOR)
            return False
        elapsed = self._clock() - started
        self._set_health(classify_health(elapsed), elapsed)
        return report.status.upper() == "OK"

    def status(self) -> SyncStatus:
        return SyncStatus(
            enabled=self._enabled,
            online=self._online,
            is_syncing=self._is_syncing,
            last_sync=self._last_sync,
            last_response_time=self._last_response_time,
            pending_count=len(self._pending),
            retry_count=self._retry_count,
            health=self._health,
            interval=self.current_interval(),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _wait_for_wake(self, timeout: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)

    async def _run_loop(self) -> None:
        while True:
            await self._wait_for_wake(self.current_interval())
            self._wake.clear()
            if self._reschedule_only:
                self._reschedule_only = False
                continue
            force = self._pull_requested
            self._pull_requested = False
            try:
                await self.sync_once(force_pull=force)
            except Exception:
                _logger.exception("Unexpected error in sync round")

    async def _run_periodic(self, interval: float, fn: Callable[[], Awaitable[Any]]) -> None:
        while True:
            if self._enabled and self._online:
                try:
                    await fn()
                except Exception:
                    _logger.exception("Unexpected error in periodic task")
            await asyncio.sleep(interval)

    def _on_change_event(self, event: ChangeEvent) -> None:
        self._bus.publish(RemoteChange(event=event.event, payload=event.payload))
        self.mark_activity()
        self.request_pull()

    def _start_mqtt(self) -> None:
        if not self._config.mqtt_enabled:
            return
        runtime = FleetMqttRuntime(loop=asyncio.get_running_loop(), on_event=self._on_change_event, logger=_logger)
        broker = MqttBroker(
            host=self._config.mqtt_host,
            port=self._config.mqtt_port,
            topic=self._config.mqtt_topic,
            keepalive=self._config.mqtt_keepalive,
        )
        try:
            runtime.start(broker)
        except OSError:
            _logger.debug("MQTT startup failed", exc_info=True)
            return
        self._mqtt_runtime = runtime

    async def start(self) -> bool:
        """Probe the server, run the first sync and start background loops.

        Returns whether the server was reachable. The loops run either way
        so the agent picks the server up once it appears.
        """
        reachable = await self.check_server()
        if reachable:
            await self.perform_full_sync()
        self._tasks.append(asyncio.create_task(self._run_loop()))
        if self._config.is_observer:
            self._tasks.append(
                asyncio.create_task(
                    self._run_periodic(self._config.location_poll_interval, self.refresh_driver_locations)
                )
            )
        self._start_mqtt()
        return reachable

    async def stop(self) -> None:
        runtime = self._mqtt_runtime
        self._mqtt_runtime = None
        if runtime is not None:
            runtime.stop()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._remove_observer()
