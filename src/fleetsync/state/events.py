"""Typed publish/subscribe channels for sync notifications.

Presentation layers subscribe to an event class; publishers hand over
frozen event models. A subscriber registered for a base class also receives
its subclasses. Subscriber failures are logged and never reach the
publisher.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from fleetsync.models.driver import DriverStatus, MovementStatus
from fleetsync.models.kinds import CollectionKind

_logger = logging.getLogger(__name__)


class ConnectionHealth(StrEnum):
    UNKNOWN = "unknown"
    EXCELLENT = "excellent"
    GOOD = "good"
    SLOW = "slow"
    POOR = "poor"


class NoticeLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class SyncEvent(BaseModel):
    """Base for every notification published on the bus."""

    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DataChanged(SyncEvent):
    """A sync round produced an observable change in local collections."""

    collections: tuple[CollectionKind, ...]
    source: str = "pull"


class ConnectionHealthChanged(SyncEvent):
    health: ConnectionHealth
    response_time: float | None = None


class DriverUpdated(SyncEvent):
    """A driver's state changed locally.

    Carries the values that were just written so listeners never have to
    re-read a store that a concurrent pull may have touched in between.
    """

    driver_id: str
    action: str
    movement_status: MovementStatus | None = None
    fuel_level: float | None = None
    status: DriverStatus | None = None


class RouteLifecycle(SyncEvent):
    driver_id: str
    action: str
    at: str


class AlertRaised(SyncEvent):
    alert: dict[str, Any]


class Notice(SyncEvent):
    """Informational message for the current actor (e.g. "please wait")."""

    title: str
    message: str
    level: NoticeLevel = NoticeLevel.INFO


class SyncWarning(Notice):
    """Non-blocking warning: connectivity lost or retries exhausted."""

    level: NoticeLevel = NoticeLevel.WARNING


class RemoteChange(SyncEvent):
    """The server announced a change through the broadcast channel."""

    event: str
    payload: dict[str, Any] = Field(default_factory=dict)


E = TypeVar("E", bound=SyncEvent)


class EventBus:
    """Synchronous in-process publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[type[SyncEvent], Callable[[Any], None]]] = []

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register *handler* for *event_type*; returns an unsubscribe callable."""
        entry: tuple[type[SyncEvent], Callable[[Any], None]] = (event_type, handler)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return _unsubscribe

    def publish(self, event: SyncEvent) -> None:
        for event_type, handler in list(self._subscribers):
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                _logger.debug("%s subscriber failed", type(event).__name__, exc_info=True)
