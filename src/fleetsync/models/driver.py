"""Driver model and the movement-status state machine."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from fleetsync.exceptions import InvalidTransitionError
from fleetsync.models._base import FleetBaseModel, clamp_percent

DEFAULT_FUEL_LEVEL = 75.0


class MovementStatus(StrEnum):
    STATIONARY = "stationary"
    ON_ROUTE = "on-route"
    ON_BREAK = "on-break"
    OFF_DUTY = "off-duty"


class DriverStatus(StrEnum):
    ACTIVE = "active"
    AVAILABLE = "available"
    INACTIVE = "inactive"


# stationary <-> on-route, stationary <-> on-break, stationary -> off-duty.
# off-duty is terminal for the shift; a new shift starts from a fresh seed.
MOVEMENT_TRANSITIONS: dict[MovementStatus, frozenset[MovementStatus]] = {
    MovementStatus.STATIONARY: frozenset({MovementStatus.ON_ROUTE, MovementStatus.ON_BREAK, MovementStatus.OFF_DUTY}),
    MovementStatus.ON_ROUTE: frozenset({MovementStatus.STATIONARY}),
    MovementStatus.ON_BREAK: frozenset({MovementStatus.STATIONARY}),
    MovementStatus.OFF_DUTY: frozenset(),
}


def can_transition(current: MovementStatus, target: MovementStatus) -> bool:
    """Whether ``current -> target`` is an edge of the movement state machine."""
    return target in MOVEMENT_TRANSITIONS[current]


def check_movement_transition(current: MovementStatus, target: MovementStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless the move is legal.

    Re-asserting the current state is not a transition and always passes.
    """
    if current == target:
        return
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"movement status cannot go from {current} to {target}",
            current=str(current),
            requested=str(target),
        )


class Driver(FleetBaseModel):
    """A user of type ``driver``.

    Parameters
    ----------
    id : str
        Unique user ID (e.g. ``USR-001``).
    movement_status : MovementStatus
        Position in the movement state machine.
    fuel_level : float
        Vehicle fuel level, clamped to ``[0, 100]``.
    status : DriverStatus
        Availability flag shown to managers.
    version : int or None
        Server-side optimistic concurrency counter.
    """

    id: str
    type: str = "driver"
    name: str | None = None
    username: str | None = None
    movement_status: MovementStatus = MovementStatus.STATIONARY
    fuel_level: float = DEFAULT_FUEL_LEVEL
    status: DriverStatus = DriverStatus.ACTIVE
    last_status_update: str | None = None
    last_fuel_update: str | None = None
    last_update: str | None = None
    version: int | None = Field(default=None, ge=0)

    @field_validator("fuel_level", mode="before")
    @classmethod
    def _clamp_fuel(cls, value: object) -> float:
        if value is None:
            return DEFAULT_FUEL_LEVEL
        return clamp_percent(value)
