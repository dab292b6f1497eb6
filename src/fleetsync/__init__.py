"""fleetsync - State synchronization for fleet operations clients and server."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetsync")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetsync.agent import PushOutcome, SyncAgent, SyncStatus
from fleetsync.client import FleetClient
from fleetsync.config import ServerConfig, SyncConfig
from fleetsync.controller import DriverStateController, ToggleResult
from fleetsync.exceptions import (
    EntityNotFoundError,
    FleetApiError,
    FleetConfigError,
    FleetSerializationError,
    FleetSyncError,
    FleetTransportError,
    InvalidTransitionError,
    VersionConflictError,
)
from fleetsync.models import (
    CollectionKind,
    Driver,
    DriverLocation,
    DriverStatus,
    MovementStatus,
    Route,
    RouteStatus,
)
from fleetsync.state.events import EventBus
from fleetsync.state.store import JsonFileBackend, LocalEntityStore, MemoryBackend

__all__ = [
    "__version__",
    "CollectionKind",
    "Driver",
    "DriverLocation",
    "DriverStateController",
    "DriverStatus",
    "EntityNotFoundError",
    "EventBus",
    "FleetApiError",
    "FleetClient",
    "FleetConfigError",
    "FleetSerializationError",
    "FleetSyncError",
    "FleetTransportError",
    "InvalidTransitionError",
    "JsonFileBackend",
    "LocalEntityStore",
    "MemoryBackend",
    "MovementStatus",
    "PushOutcome",
    "Route",
    "RouteStatus",
    "ServerConfig",
    "SyncAgent",
    "SyncConfig",
    "SyncStatus",
    "ToggleResult",
    "VersionConflictError",
]
