"""Local entity store.

Typed accessors and mutators over the named entity collections a client
holds. No invariants are enforced here; callers validate. Every write runs
through an ordered list of observers: the persistence observer first (so the
most recent state survives a restart), then whatever the sync agent and
other components register.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import secrets
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from fleetsync._constants import DRIVER_HISTORY_LIMIT, STORAGE_PREFIX
from fleetsync.models._base import clamp_percent, utcnow_iso
from fleetsync.models.kinds import CollectionKind, CollectionShape
from fleetsync.models.location import derive_speed_kmh
from fleetsync.models.records import BinStatus, derive_bin_status
from fleetsync.models.route import RouteStatus

if TYPE_CHECKING:
    from fleetsync.config import SyncConfig

_logger = logging.getLogger(__name__)


class WriteOrigin(StrEnum):
    LOCAL = "local"
    SYNC = "sync"


@dataclass(frozen=True)
class StoreWrite:
    kind: CollectionKind
    value: Any
    origin: WriteOrigin


WriteObserver = Callable[[StoreWrite], None]


class StorageBackend(Protocol):
    """Durable medium for one JSON record per collection."""

    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryBackend:
    """Non-durable backend used when no storage directory is configured."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        raw = self._records.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: Any) -> None:
        self._records[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._records.pop(key, None)


class JsonFileBackend:
    """One ``<prefix><key>.json`` file per collection inside *directory*."""

    def __init__(self, directory: str | os.PathLike[str], prefix: str = STORAGE_PREFIX) -> None:
        self._dir = Path(directory)
        self._prefix = prefix
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._dir / f"{self._prefix}{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Ignoring corrupt local record %s", path)
            return None

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(value, handle, separators=(",", ":"))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def generate_id(prefix: str) -> str:
    """``PREFIX-<epoch ms>-<random>`` identifiers for locally created records."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _match_id(entity: Any, entity_id: str) -> bool:
    return isinstance(entity, dict) and entity.get("id") == entity_id


class LocalEntityStore:
    """Client-side cache of every entity collection.

    ``get`` returns deep copies, so mutating a returned value never changes
    the store; use ``set`` or one of the helpers.
    """

    def __init__(self, backend: StorageBackend | None = None) -> None:
        self._backend: StorageBackend = backend if backend is not None else MemoryBackend()
        self._cache: dict[CollectionKind, Any] = {}
        self._observers: list[WriteObserver] = [self._persist]

    @classmethod
    def from_config(cls, config: SyncConfig) -> LocalEntityStore:
        """Durable store under ``config.storage_dir``, or in-memory when unset."""
        if config.storage_dir:
            return cls(JsonFileBackend(config.storage_dir, prefix=config.storage_prefix))
        return cls()

    # ------------------------------------------------------------------
    # Write pipeline
    # ------------------------------------------------------------------

    def add_observer(self, observer: WriteObserver) -> Callable[[], None]:
        """Append *observer* to the write pipeline; returns a remover."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def _persist(self, write: StoreWrite) -> None:
        try:
            self._backend.save(str(write.kind), write.value)
        except (OSError, TypeError, ValueError):
            _logger.warning("Failed to persist %s locally", write.kind, exc_info=True)

    def _notify(self, write: StoreWrite) -> None:
        for observer in list(self._observers):
            try:
                observer(write)
            except Exception:
                _logger.debug("Store observer failed for %s", write.kind, exc_info=True)

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    def _load(self, kind: CollectionKind) -> Any:
        if kind not in self._cache:
            stored = self._backend.load(str(kind))
            expected = list if kind.layout.shape is CollectionShape.LIST else dict
            self._cache[kind] = stored if isinstance(stored, expected) else kind.layout.empty()
        return self._cache[kind]

    def get(self, kind: CollectionKind) -> Any:
        """Return a copy of the collection (empty list/map when absent)."""
        return copy.deepcopy(self._load(kind))

    def set(self, kind: CollectionKind, value: Any, *, origin: WriteOrigin = WriteOrigin.LOCAL) -> None:
        """Replace a whole collection and run the write pipeline."""
        stored = copy.deepcopy(value)
        self._cache[kind] = stored
        self._notify(StoreWrite(kind=kind, value=copy.deepcopy(stored), origin=origin))

    def snapshot(self) -> dict[str, Any]:
        """Every known collection keyed by its wire name."""
        return {str(kind): self.get(kind) for kind in CollectionKind}

    def export_data(self) -> dict[str, Any]:
        return {str(kind): value for kind, value in self.snapshot().items() if value}

    def import_data(self, data: dict[str, Any]) -> list[CollectionKind]:
        """Load collections from an exported mapping; unknown keys are ignored."""
        imported: list[CollectionKind] = []
        for key, value in data.items():
            kind = CollectionKind.parse(key)
            if kind is None:
                continue
            self.set(kind, value)
            imported.append(kind)
        return imported

    def clear(self) -> None:
        for kind in CollectionKind:
            self._cache.pop(kind, None)
            try:
                self._backend.remove(str(kind))
            except OSError:
                _logger.warning("Failed to remove local record %s", kind, exc_info=True)

    # ------------------------------------------------------------------
    # Entity helpers (list-shaped kinds)
    # ------------------------------------------------------------------

    def get_entity(self, kind: CollectionKind, entity_id: str) -> dict[str, Any] | None:
        for entity in self._load(kind):
            if _match_id(entity, entity_id):
                return copy.deepcopy(entity)
        return None

    def upsert(
        self, kind: CollectionKind, entity: dict[str, Any], *, origin: WriteOrigin = WriteOrigin.LOCAL
    ) -> dict[str, Any]:
        """Insert or replace an entity by ``id``."""
        items = self.get(kind)
        for index, existing in enumerate(items):
            if _match_id(existing, entity["id"]):
                items[index] = entity
                break
        else:
            items.append(entity)
        self.set(kind, items, origin=origin)
        return copy.deepcopy(entity)

    def update_entity(
        self,
        kind: CollectionKind,
        entity_id: str,
        updates: dict[str, Any],
        *,
        origin: WriteOrigin = WriteOrigin.LOCAL,
    ) -> dict[str, Any] | None:
        """Shallow-merge *updates* into an entity; ``None`` when it is missing."""
        items = self.get(kind)
        for index, existing in enumerate(items):
            if _match_id(existing, entity_id):
                items[index] = {**existing, **updates}
                self.set(kind, items, origin=origin)
                return copy.deepcopy(items[index])
        return None

    # ------------------------------------------------------------------
    # Users / drivers
    # ------------------------------------------------------------------

    def get_users(self) -> list[dict[str, Any]]:
        return self.get(CollectionKind.USERS)

    def get_drivers(self) -> list[dict[str, Any]]:
        return [u for u in self.get_users() if isinstance(u, dict) and u.get("type") == "driver"]

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self.get_entity(CollectionKind.USERS, user_id)

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        for user in self._load(CollectionKind.USERS):
            if isinstance(user, dict) and user.get("username") == username:
                return copy.deepcopy(user)
        return None

    def upsert_user(self, user: dict[str, Any]) -> dict[str, Any]:
        return self.upsert(CollectionKind.USERS, user)

    def update_user(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        return self.update_entity(CollectionKind.USERS, user_id, updates)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def get_routes(self) -> list[dict[str, Any]]:
        return self.get(CollectionKind.ROUTES)

    def upsert_route(self, route: dict[str, Any]) -> dict[str, Any]:
        return self.upsert(CollectionKind.ROUTES, route)

    def get_driver_routes(self, driver_id: str) -> list[dict[str, Any]]:
        """Routes of one driver, excluding completed ones."""
        return [
            r
            for r in self.get_routes()
            if isinstance(r, dict) and r.get("driverId") == driver_id and r.get("status") != RouteStatus.COMPLETED
        ]

    # ------------------------------------------------------------------
    # Bins / collections
    # ------------------------------------------------------------------

    def get_bins(self) -> list[dict[str, Any]]:
        return self.get(CollectionKind.BINS)

    def update_bin(self, bin_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Update a bin, recompute its status and raise threshold alerts."""
        bins = self.get(CollectionKind.BINS)
        for index, existing in enumerate(bins):
            if not _match_id(existing, bin_id):
                continue
            merged = {**existing, **updates, "lastUpdated": utcnow_iso()}
            merged["fill"] = clamp_percent(merged.get("fill") or 0)
            status = derive_bin_status(merged["fill"], merged.get("temperature"))
            merged["status"] = str(status)
            bins[index] = merged
            self.set(CollectionKind.BINS, bins)
            if status is BinStatus.FIRE_RISK:
                self.add_alert(
                    "fire_risk",
                    f"High temperature detected at bin {bin_id}: {merged.get('temperature')}C",
                    "critical",
                    bin_id,
                )
            elif status is BinStatus.CRITICAL:
                self.add_alert("bin_overflow", f"Bin {bin_id} is {merged['fill']:g}% full", "high", bin_id)
            return copy.deepcopy(merged)
        return None

    def get_collections(self) -> list[dict[str, Any]]:
        return self.get(CollectionKind.COLLECTIONS)

    def add_collection(self, collection: dict[str, Any]) -> dict[str, Any]:
        """Record a pickup event and reset the bin's fill level."""
        record = dict(collection)
        record.setdefault("id", generate_id("COL"))
        record.setdefault("timestamp", utcnow_iso())
        items = self.get(CollectionKind.COLLECTIONS)
        items.append(record)
        self.set(CollectionKind.COLLECTIONS, items)
        if record.get("binId"):
            self.update_bin(
                record["binId"],
                {"fill": 0, "lastCollection": record["timestamp"], "collectedBy": record.get("driverId")},
            )
        if record.get("driverId"):
            self.add_driver_history_entry(
                record["driverId"],
                {"action": "collection", "binId": record.get("binId"), "weight": record.get("weight")},
            )
        return copy.deepcopy(record)

    def add_driver_history_entry(self, driver_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        history = self.get(CollectionKind.DRIVER_HISTORY)
        record = {"id": generate_id("DH"), "timestamp": utcnow_iso(), **entry}
        entries = [record, *history.get(driver_id, [])]
        history[driver_id] = entries[:DRIVER_HISTORY_LIMIT]
        self.set(CollectionKind.DRIVER_HISTORY, history)
        return record

    # ------------------------------------------------------------------
    # Alerts / issues
    # ------------------------------------------------------------------

    def add_alert(self, alert_type: str, message: str, priority: str, related_id: str | None = None) -> dict[str, Any]:
        alert = {
            "id": generate_id("ALT"),
            "type": alert_type,
            "message": message,
            "priority": priority,
            "relatedId": related_id,
            "timestamp": utcnow_iso(),
            "status": "active",
        }
        items = self.get(CollectionKind.ALERTS)
        items.append(alert)
        self.set(CollectionKind.ALERTS, items)
        return alert

    def get_active_alerts(self) -> list[dict[str, Any]]:
        return [a for a in self.get(CollectionKind.ALERTS) if isinstance(a, dict) and a.get("status") == "active"]

    def add_issue(self, issue: dict[str, Any]) -> dict[str, Any]:
        items = self.get(CollectionKind.ISSUES)
        items.append(issue)
        self.set(CollectionKind.ISSUES, items)
        return copy.deepcopy(issue)

    # ------------------------------------------------------------------
    # Driver locations (map keyed by driver ID)
    # ------------------------------------------------------------------

    def get_all_driver_locations(self) -> dict[str, dict[str, Any]]:
        return self.get(CollectionKind.DRIVER_LOCATIONS)

    def get_driver_location(self, driver_id: str) -> dict[str, Any] | None:
        location = self._load(CollectionKind.DRIVER_LOCATIONS).get(driver_id)
        return copy.deepcopy(location) if location is not None else None

    def set_driver_location(self, driver_id: str, location: dict[str, Any]) -> dict[str, Any]:
        """Overwrite one driver's location record as given."""
        locations = self.get(CollectionKind.DRIVER_LOCATIONS)
        record = {**location, "timestamp": location.get("timestamp") or utcnow_iso()}
        locations[driver_id] = record
        self.set(CollectionKind.DRIVER_LOCATIONS, locations)
        return copy.deepcopy(record)

    def update_driver_location(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        *,
        accuracy: float | None = None,
        heading: float | None = None,
        altitude: float | None = None,
    ) -> dict[str, Any]:
        """Record a new position fix, deriving speed from the previous one.

        Only the latest fix is kept.
        """
        previous = self.get_driver_location(driver_id)
        record: dict[str, Any] = {
            "lat": lat,
            "lng": lng,
            "timestamp": utcnow_iso(),
            "speed": derive_speed_kmh(previous, lat, lng),
        }
        for key, value in (("accuracy", accuracy), ("heading", heading), ("altitude", altitude)):
            if value is not None:
                record[key] = value
        if previous and previous.get("movementStatus"):
            record["movementStatus"] = previous["movementStatus"]
        return self.set_driver_location(driver_id, record)
