"""Collection route model and route lifecycle rules."""

from __future__ import annotations

from enum import StrEnum

from pydantic import AliasChoices, Field, field_validator

from fleetsync.exceptions import InvalidTransitionError
from fleetsync.models._base import FleetBaseModel


class RouteStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RouteStatus.COMPLETED, RouteStatus.CANCELLED)


_PROGRESSION: tuple[RouteStatus, ...] = (
    RouteStatus.PENDING,
    RouteStatus.ACTIVE,
    RouteStatus.IN_PROGRESS,
    RouteStatus.COMPLETED,
)


def check_route_transition(current: RouteStatus, target: RouteStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is legal.

    Routes only move forward along pending -> active -> in-progress ->
    completed (skipping ahead is allowed), or to cancelled from any
    non-terminal state. Terminal states never change.
    """
    if current == target:
        return
    if current.is_terminal:
        raise InvalidTransitionError(
            f"route is already {current}",
            current=str(current),
            requested=str(target),
        )
    if target == RouteStatus.CANCELLED:
        return
    if _PROGRESSION.index(target) < _PROGRESSION.index(current):
        raise InvalidTransitionError(
            f"route cannot move back from {current} to {target}",
            current=str(current),
            requested=str(target),
        )


class Route(FleetBaseModel):
    """A collection route assigned to one driver."""

    id: str
    driver_id: str
    bin_ids: list[str] = Field(default_factory=list, validation_alias=AliasChoices("binIds", "bin_ids", "bins"))
    status: RouteStatus = RouteStatus.PENDING
    assigned_by: str | None = None
    assigned_at: str | None = None
    completed_at: str | None = None
    completed_by: str | None = None
    last_update: str | None = None
    version: int | None = Field(default=None, ge=0)

    @field_validator("bin_ids", mode="before")
    @classmethod
    def _dedupe_bins(cls, value: object) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("binIds must be a list of bin IDs")
        seen: dict[str, None] = {}
        for item in value:
            seen.setdefault(str(item), None)
        return list(seen)
