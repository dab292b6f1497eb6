"""Custom exception hierarchy for fleetsync."""

from __future__ import annotations


class FleetSyncError(Exception):
    """Base exception for all fleetsync errors."""


class FleetConfigError(FleetSyncError):
    """Invalid or missing configuration."""


class FleetTransportError(FleetSyncError):
    """HTTP-level failure (network, timeout, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FleetApiError(FleetSyncError):
    """Server answered with ``success: false`` (application-level error)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class EntityNotFoundError(FleetApiError):
    """Target entity ID is absent from the authoritative store.

    Not retried automatically: the caller has to re-resolve the ID.
    """


class VersionConflictError(FleetApiError):
    """``expectedVersion`` did not match the server-side entity version."""


class InvalidTransitionError(FleetSyncError):
    """Illegal movement-status or route-status transition."""

    def __init__(self, message: str, *, current: str = "", requested: str = "") -> None:
        self.current = current
        self.requested = requested
        super().__init__(message)


class FleetSerializationError(FleetSyncError):
    """A payload could not be made JSON-safe."""
