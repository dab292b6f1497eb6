"""Client and server configuration for fleetsync."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from fleetsync._constants import STORAGE_PREFIX
from fleetsync.exceptions import FleetConfigError

_ROLES = frozenset({"driver", "manager", "admin"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _read_env(
    env: Mapping[str, str],
    mapping: dict[str, tuple[str, type]],
    overrides: dict[str, Any],
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    for env_key, (field_name, caster) in mapping.items():
        if field_name in overrides:
            continue
        raw = env.get(env_key)
        if raw is None:
            continue
        try:
            if caster is bool:
                kwargs[field_name] = _env_bool(raw, False)
            else:
                kwargs[field_name] = caster(raw)
        except ValueError as exc:
            raise FleetConfigError(f"{env_key} has invalid value {raw!r}") from exc
    return kwargs


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client-side configuration for the sync agent and driver controller.

    Parameters
    ----------
    base_url : str
        Root URL of the authoritative store API (e.g. ``http://host:8080/api``).
    actor_id : str or None
        ID of the current actor (driver or manager). Authentication itself
        happens elsewhere; only the identity is consumed here.
    role : str
        ``"driver"``, ``"manager"`` or ``"admin"``. Non-driver roles also
        poll the dedicated driver-locations endpoint.
    storage_dir : str or None
        Directory for the local durable store. ``None`` keeps everything in
        memory (nothing survives a restart).
    storage_prefix : str
        Namespace prefix for persisted collection records.
    active_interval : float
        Poll period in seconds while there was local activity within
        ``activity_window``.
    quiet_interval : float
        Poll period in seconds otherwise.
    activity_window : float
        Seconds after the last local mutation during which the agent stays
        in the active cadence.
    force_pull_after : float
        Seconds after which a pull happens even when the local fingerprint
        is unchanged. ``0`` disables the forced pull.
    request_timeout : float
        Total timeout for a single HTTP request.
    max_retries : int
        Failed sync attempts per cycle before the offline warning fires.
    location_poll_interval : float
        Fixed period of the manager-side driver-locations poll.
    route_debounce : float
        Minimum seconds between two accepted route toggles.
    mqtt_enabled : bool
        Subscribe to server change broadcasts over MQTT.
    mqtt_host : str
        MQTT broker host.
    mqtt_port : int
        MQTT broker port.
    mqtt_topic : str
        Topic the server publishes change events on.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    """

    base_url: str = "http://127.0.0.1:8080/api"
    actor_id: str | None = None
    role: str = "driver"
    storage_dir: str | None = None
    storage_prefix: str = STORAGE_PREFIX
    active_interval: float = 10.0
    quiet_interval: float = 30.0
    activity_window: float = 60.0
    force_pull_after: float = 60.0
    request_timeout: float = 8.0
    max_retries: int = 3
    location_poll_interval: float = 10.0
    route_debounce: float = 2.0
    mqtt_enabled: bool = False
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_topic: str = "fleetsync/events"
    mqtt_keepalive: int = 60

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise FleetConfigError(f"role must be one of {sorted(_ROLES)}, got {self.role!r}")
        if self.active_interval <= 0 or self.quiet_interval <= 0:
            raise FleetConfigError("poll intervals must be positive")
        if self.max_retries < 1:
            raise FleetConfigError("max_retries must be at least 1")
        if self.route_debounce < 0:
            raise FleetConfigError("route_debounce must not be negative")

    @property
    def is_observer(self) -> bool:
        """Whether this client watches drivers rather than being one."""
        return self.role != "driver"

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``FLEETSYNC_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        mapping: dict[str, tuple[str, type]] = {
            "FLEETSYNC_BASE_URL": ("base_url", str),
            "FLEETSYNC_ACTOR_ID": ("actor_id", str),
            "FLEETSYNC_ROLE": ("role", str),
            "FLEETSYNC_STORAGE_DIR": ("storage_dir", str),
            "FLEETSYNC_STORAGE_PREFIX": ("storage_prefix", str),
            "FLEETSYNC_ACTIVE_INTERVAL": ("active_interval", float),
            "FLEETSYNC_QUIET_INTERVAL": ("quiet_interval", float),
            "FLEETSYNC_ACTIVITY_WINDOW": ("activity_window", float),
            "FLEETSYNC_FORCE_PULL_AFTER": ("force_pull_after", float),
            "FLEETSYNC_REQUEST_TIMEOUT": ("request_timeout", float),
            "FLEETSYNC_MAX_RETRIES": ("max_retries", int),
            "FLEETSYNC_LOCATION_POLL_INTERVAL": ("location_poll_interval", float),
            "FLEETSYNC_ROUTE_DEBOUNCE": ("route_debounce", float),
            "FLEETSYNC_MQTT_ENABLED": ("mqtt_enabled", bool),
            "FLEETSYNC_MQTT_HOST": ("mqtt_host", str),
            "FLEETSYNC_MQTT_PORT": ("mqtt_port", int),
            "FLEETSYNC_MQTT_TOPIC": ("mqtt_topic", str),
            "FLEETSYNC_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        config_kwargs = _read_env(os.environ, mapping, overrides)
        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class ServerConfig:
    """Authoritative store server configuration.

    ``mqtt_enabled`` turns on the change broadcast; the HTTP API works the
    same either way.
    """

    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = "/api"
    mqtt_enabled: bool = False
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_topic: str = "fleetsync/events"
    mqtt_keepalive: int = 60

    @classmethod
    def from_env(cls, **overrides: Any) -> ServerConfig:
        """Create configuration from ``FLEETSYNC_SERVER_*`` and ``PORT``."""
        mapping: dict[str, tuple[str, type]] = {
            "FLEETSYNC_SERVER_HOST": ("host", str),
            "PORT": ("port", int),
            "FLEETSYNC_SERVER_API_PREFIX": ("api_prefix", str),
            "FLEETSYNC_MQTT_ENABLED": ("mqtt_enabled", bool),
            "FLEETSYNC_MQTT_HOST": ("mqtt_host", str),
            "FLEETSYNC_MQTT_PORT": ("mqtt_port", int),
            "FLEETSYNC_MQTT_TOPIC": ("mqtt_topic", str),
            "FLEETSYNC_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        config_kwargs = _read_env(os.environ, mapping, overrides)
        config_kwargs.update(overrides)
        return cls(**config_kwargs)
