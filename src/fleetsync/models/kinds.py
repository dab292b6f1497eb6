"""Known entity collections, their shapes and merge strategies.

Every top-level key of a snapshot is one :class:`CollectionKind`. Each kind
declares whether it is a list of entities or a map, which merge strategy
the sync agent applies to it, and (for entity lists) the element schema
used at validation boundaries. Dispatch over kinds goes through
:data:`KIND_LAYOUTS`, which covers every member.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel

from fleetsync.models.driver import Driver
from fleetsync.models.records import Alert, Bin, Collection, Issue
from fleetsync.models.route import Route


class CollectionShape(StrEnum):
    LIST = "list"
    MAP = "map"


class MergeStrategy(StrEnum):
    UNION_BY_IDENTITY = "union-by-identity"
    REPLACE_IF_PRESENT = "replace-if-present"


class CollectionKind(StrEnum):
    USERS = "users"
    BINS = "bins"
    ROUTES = "routes"
    COLLECTIONS = "collections"
    DRIVER_LOCATIONS = "driverLocations"
    ALERTS = "alerts"
    ISSUES = "issues"
    COMPLAINTS = "complaints"
    ANALYTICS = "analytics"
    BIN_HISTORY = "binHistory"
    DRIVER_HISTORY = "driverHistory"
    SYSTEM_LOGS = "systemLogs"
    PENDING_REGISTRATIONS = "pendingRegistrations"

    @property
    def layout(self) -> KindLayout:
        return KIND_LAYOUTS[self]

    @classmethod
    def parse(cls, key: str) -> CollectionKind | None:
        """Return the kind for a snapshot key, or ``None`` for unknown keys."""
        try:
            return cls(key)
        except ValueError:
            return None


@dataclass(frozen=True)
class KindLayout:
    shape: CollectionShape
    strategy: MergeStrategy
    model: type[BaseModel] | None = None
    natural_keys: tuple[str, ...] = ()

    def empty(self) -> list | dict:
        return [] if self.shape is CollectionShape.LIST else {}


KIND_LAYOUTS: dict[CollectionKind, KindLayout] = {
    CollectionKind.USERS: KindLayout(
        CollectionShape.LIST, MergeStrategy.UNION_BY_IDENTITY, Driver, natural_keys=("username",)
    ),
    CollectionKind.BINS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT, Bin),
    CollectionKind.ROUTES: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT, Route),
    CollectionKind.COLLECTIONS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT, Collection),
    CollectionKind.DRIVER_LOCATIONS: KindLayout(CollectionShape.MAP, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.ALERTS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT, Alert),
    CollectionKind.ISSUES: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT, Issue),
    CollectionKind.COMPLAINTS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.ANALYTICS: KindLayout(CollectionShape.MAP, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.BIN_HISTORY: KindLayout(CollectionShape.MAP, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.DRIVER_HISTORY: KindLayout(CollectionShape.MAP, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.SYSTEM_LOGS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT),
    CollectionKind.PENDING_REGISTRATIONS: KindLayout(CollectionShape.LIST, MergeStrategy.REPLACE_IF_PRESENT),
}
