"""Driver-side state controller.

Originates the mutations the sync agent delivers: route start/end, breaks,
shift end, fuel and location updates, issue reports. Every operation
updates the local store first (optimistic) and then issues a targeted sync;
a failed sync never rolls the local state back.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from fleetsync.agent import PushOutcome, SyncAgent
from fleetsync.exceptions import EntityNotFoundError, FleetConfigError
from fleetsync.models._base import utcnow_iso
from fleetsync.models.driver import Driver, DriverStatus, MovementStatus, check_movement_transition
from fleetsync.models.kinds import CollectionKind
from fleetsync.models.records import Issue
from fleetsync.models.route import RouteStatus
from fleetsync.state.events import AlertRaised, DriverUpdated, EventBus, Notice, RouteLifecycle
from fleetsync.state.store import LocalEntityStore, generate_id

_logger = logging.getLogger(__name__)

DEFAULT_ROUTE_DEBOUNCE = 2.0


class ToggleResult(StrEnum):
    STARTED = "started"
    ENDED = "ended"
    REJECTED = "rejected"


class DriverStateController:
    """State machine over one driver's ``movementStatus``.

    ``agent`` may be ``None`` for local-only operation; the store is then
    the only thing updated. With an agent, ``driver_id`` and ``debounce``
    default to the agent config's ``actor_id`` and ``route_debounce``.
    """

    def __init__(
        self,
        store: LocalEntityStore,
        driver_id: str | None = None,
        *,
        agent: SyncAgent | None = None,
        bus: EventBus | None = None,
        debounce: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if driver_id is None:
            driver_id = agent.config.actor_id if agent is not None else None
            if not driver_id:
                raise FleetConfigError("driver_id is required when the agent config has no actor_id")
        if debounce is None:
            debounce = agent.config.route_debounce if agent is not None else DEFAULT_ROUTE_DEBOUNCE
        self._store = store
        self._driver_id = driver_id
        self._agent = agent
        if bus is not None:
            self._bus = bus
        elif agent is not None:
            self._bus = agent.bus
        else:
            self._bus = EventBus()
        self._debounce = debounce
        self._clock = clock
        self._last_route_action: float | None = None
        self._is_processing = False

    @property
    def driver_id(self) -> str:
        return self._driver_id

    @property
    def driver(self) -> Driver | None:
        record = self._store.get_user(self._driver_id)
        return Driver.model_validate(record) if record is not None else None

    @property
    def movement_status(self) -> MovementStatus:
        driver = self.driver
        return driver.movement_status if driver is not None else MovementStatus.STATIONARY

    def _require_driver(self) -> Driver:
        driver = self.driver
        if driver is None:
            raise EntityNotFoundError(
                f"driver {self._driver_id} is not in the local store",
                code="not_found",
                endpoint="local",
            )
        return driver

    def _apply_movement(
        self,
        target: MovementStatus,
        *,
        status: DriverStatus | None = None,
        action: str,
        extra: dict[str, Any] | None = None,
    ) -> str:
        driver = self._require_driver()
        check_movement_transition(driver.movement_status, target)
        now = utcnow_iso()
        updates: dict[str, Any] = {
            "movementStatus": str(target),
            "lastStatusUpdate": now,
            "lastUpdate": now,
            **(extra or {}),
        }
        if status is not None:
            updates["status"] = str(status)
        self._store.update_user(self._driver_id, updates)

        location = self._store.get_driver_location(self._driver_id)
        if location is not None:
            self._store.set_driver_location(
                self._driver_id, {**location, "status": str(target), "movementStatus": str(target)}
            )

        self._bus.publish(
            DriverUpdated(driver_id=self._driver_id, action=action, movement_status=target, status=status)
        )
        return now

    async def _sync_status(self, target: MovementStatus, status: DriverStatus | None) -> PushOutcome | None:
        if self._agent is None:
            return None
        return await self._agent.sync_driver_status(self._driver_id, movement_status=target, status=status)

    async def _reconcile(self, outcome: PushOutcome | None) -> PushOutcome | None:
        """Pull the server's view once it acknowledged a route change."""
        if self._agent is None or outcome is not PushOutcome.SENT:
            return outcome
        if not await self._agent.sync_once(force_pull=True):
            self._agent.request_pull()
        return outcome

    # ------------------------------------------------------------------
    # Route lifecycle
    # ------------------------------------------------------------------

    async def toggle_route(self) -> ToggleResult:
        """Start or end the current route, debounced.

        A call within ``debounce`` seconds of the last accepted one, or
        while one is still running, is rejected with a "please wait"
        notice and changes nothing.
        """
        now = self._clock()
        if self._is_processing or (
            self._last_route_action is not None and now - self._last_route_action < self._debounce
        ):
            self._bus.publish(Notice(title="Please Wait", message="Route action in progress..."))
            return ToggleResult.REJECTED

        self._is_processing = True
        self._last_route_action = now
        try:
            if self.movement_status is MovementStatus.ON_ROUTE:
                await self.end_route()
                return ToggleResult.ENDED
            await self.start_route()
            return ToggleResult.STARTED
        finally:
            self._is_processing = False

    async def start_route(self) -> PushOutcome | None:
        at = self._apply_movement(
            MovementStatus.ON_ROUTE,
            status=DriverStatus.ACTIVE,
            action="start_route",
            extra={"routeStartTime": utcnow_iso()},
        )
        self._bus.publish(RouteLifecycle(driver_id=self._driver_id, action="start", at=at))
        _logger.info("Route started for %s", self._driver_id)
        return await self._reconcile(await self._sync_status(MovementStatus.ON_ROUTE, DriverStatus.ACTIVE))

    async def end_route(self) -> PushOutcome | None:
        """Back to ``stationary`` and complete every open route of the driver.

        The server applies the same cascade atomically through the
        route-completion endpoint.
        """
        at = utcnow_iso()
        self._apply_movement(
            MovementStatus.STATIONARY,
            status=DriverStatus.AVAILABLE,
            action="end_route",
            extra={"routeEndTime": at, "lastRouteCompletion": at},
        )
        self._complete_local_routes(at)
        self._bus.publish(RouteLifecycle(driver_id=self._driver_id, action="end", at=at))
        _logger.info("Route ended for %s", self._driver_id)
        if self._agent is None:
            return None
        return await self._reconcile(await self._agent.complete_route(self._driver_id, at))

    def _complete_local_routes(self, at: str) -> int:
        routes = self._store.get_routes()
        completed = 0
        for route in routes:
            if not isinstance(route, dict) or route.get("driverId") != self._driver_id:
                continue
            try:
                status = RouteStatus(route.get("status", RouteStatus.PENDING))
            except ValueError:
                continue
            if status.is_terminal:
                continue
            route.update(
                {
                    "status": str(RouteStatus.COMPLETED),
                    "completedAt": at,
                    "completedBy": self._driver_id,
                    "lastUpdate": at,
                }
            )
            completed += 1
        if completed:
            self._store.set(CollectionKind.ROUTES, routes)
        return completed

    # ------------------------------------------------------------------
    # Breaks and shift
    # ------------------------------------------------------------------

    async def take_break(self) -> PushOutcome | None:
        self._apply_movement(MovementStatus.ON_BREAK, action="take_break")
        return await self._sync_status(MovementStatus.ON_BREAK, None)

    async def end_break(self) -> PushOutcome | None:
        self._apply_movement(MovementStatus.STATIONARY, action="end_break")
        return await self._sync_status(MovementStatus.STATIONARY, None)

    async def end_shift(self) -> PushOutcome | None:
        self._apply_movement(MovementStatus.OFF_DUTY, status=DriverStatus.INACTIVE, action="end_shift")
        _logger.info("Shift ended for %s", self._driver_id)
        return await self._sync_status(MovementStatus.OFF_DUTY, DriverStatus.INACTIVE)

    def seed_driver(
        self,
        *,
        name: str | None = None,
        username: str | None = None,
        lat: float | None = None,
        lng: float | None = None,
    ) -> Driver:
        """Start a shift: make sure the driver exists locally and is ``stationary``.

        Unlike the state-machine transitions this is a reset, so it also
        works from ``off-duty``.
        """
        now = utcnow_iso()
        existing = self._store.get_user(self._driver_id)
        if existing is None:
            seeded = Driver(
                id=self._driver_id,
                name=name,
                username=username,
                last_status_update=now,
                last_update=now,
            ).to_wire()
            self._store.upsert_user(seeded)
        else:
            updates: dict[str, Any] = {"type": "driver", "lastStatusUpdate": now, "lastUpdate": now}
            if existing.get("movementStatus") in (None, str(MovementStatus.OFF_DUTY)):
                updates["movementStatus"] = str(MovementStatus.STATIONARY)
                updates["status"] = str(DriverStatus.ACTIVE)
            self._store.update_user(self._driver_id, updates)

        if lat is not None and lng is not None and self._store.get_driver_location(self._driver_id) is None:
            self._store.set_driver_location(
                self._driver_id,
                {"lat": lat, "lng": lng, "timestamp": now, "speed": 0.0, "movementStatus": str(MovementStatus.STATIONARY)},
            )
        return self._require_driver()

    # ------------------------------------------------------------------
    # Fuel, location and issues
    # ------------------------------------------------------------------

    async def update_fuel(self, level: float) -> PushOutcome | None:
        """Set the fuel level; values outside ``[0, 100]`` raise ``ValueError``.

        Listeners receive the new value in the event itself, not by reading
        the store back.
        """
        if isinstance(level, bool) or not isinstance(level, (int, float)) or math.isnan(level):
            raise ValueError("fuel level must be a number")
        if not 0 <= level <= 100:
            raise ValueError(f"fuel level must be between 0 and 100, got {level}")
        self._require_driver()
        value = float(level)
        now = utcnow_iso()
        self._store.update_user(self._driver_id, {"fuelLevel": value, "lastFuelUpdate": now, "lastUpdate": now})
        self._bus.publish(DriverUpdated(driver_id=self._driver_id, action="fuel", fuel_level=value))
        if self._agent is None:
            return None
        return await self._agent.sync_fuel(self._driver_id, value)

    async def update_location(self, lat: float, lng: float, *, accuracy: float | None = None) -> PushOutcome | None:
        record = self._store.update_driver_location(self._driver_id, lat, lng, accuracy=accuracy)
        if self._agent is None:
            return None
        return await self._agent.sync_location(self._driver_id, record)

    async def report_issue(self, issue_type: str, priority: str, description: str) -> Issue:
        """Record an issue and raise an alert; ``critical`` issues raise critical alerts."""
        issue = Issue(
            id=generate_id("ISS"),
            type=issue_type,
            priority=priority,
            description=description,
            driver_id=self._driver_id,
        )
        self._store.add_issue(issue.to_wire())
        driver = self.driver
        who = driver.name if driver is not None and driver.name else self._driver_id
        alert = self._store.add_alert(
            "driver_issue",
            f"{who} reported {issue_type.replace('_', ' ')}: {description}",
            "critical" if priority == "critical" else "high",
            issue.id,
        )
        self._bus.publish(AlertRaised(alert=alert))
        if self._agent is not None:
            await self._agent.flush_dirty()
        return issue
