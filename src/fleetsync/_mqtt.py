"""Internal MQTT change-broadcast parsing and runtime helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from fleetsync._serialize import dumps_safe
from fleetsync.exceptions import FleetSerializationError


@dataclass(frozen=True)
class MqttBroker:
    """Broker connection details."""

    host: str
    port: int
    topic: str
    keepalive: int = 60
    client_id: str = ""


@dataclass(frozen=True)
class ChangeEvent:
    """Normalized change notification published by the server."""

    event: str
    driver_id: str | None
    topic: str
    payload: dict[str, Any]


def encode_change(event: str, **fields: Any) -> bytes:
    """Build the JSON body of a change notification."""
    return dumps_safe({"event": event, **fields}).encode("utf-8")


def decode_change(topic: str, payload: bytes) -> ChangeEvent:
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FleetSerializationError(f"MQTT payload on {topic} is not JSON") from exc
    if not isinstance(parsed, dict):
        raise FleetSerializationError(f"MQTT payload on {topic} is not an object")
    driver_id = parsed.get("driverId")
    return ChangeEvent(
        event=str(parsed.get("event") or ""),
        driver_id=driver_id if isinstance(driver_id, str) and driver_id else None,
        topic=topic,
        payload=parsed,
    )


def _new_client(client_id: str, logger: logging.Logger) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id or f"fleetsync_{secrets.token_hex(4)}",
        protocol=mqtt.MQTTv5,
    )
    client.enable_logger(logger)
    return client


class FleetMqttRuntime:
    """Threaded paho-mqtt subscriber that emits parsed events onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[ChangeEvent], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, broker: MqttBroker) -> None:
        """Connect and subscribe with provided broker details."""
        self.stop()
        self._logger.debug("MQTT runtime start requested host=%s port=%s topic=%s", broker.host, broker.port, broker.topic)

        client = _new_client(broker.client_id, self._logger)
        self._topic = broker.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            if self._topic:
                self._logger.debug("MQTT subscribing topic=%s", self._topic)
                c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                event = decode_change(msg.topic, msg.payload)
                self._logger.debug("MQTT change event=%s driver=%s", event.event, event.driver_id)
                self._loop.call_soon_threadsafe(self._on_event, event)
            except Exception:
                self._logger.debug("MQTT payload parse failure", exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(broker.host, broker.port, keepalive=broker.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class ChangePublisher:
    """Fire-and-forget publisher of change notifications.

    Publishing never raises: a broker outage only costs clients the early
    pull, they still converge through periodic polling.
    """

    def __init__(self, broker: MqttBroker, *, logger: logging.Logger | None = None) -> None:
        self._broker = broker
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def start(self) -> None:
        self.stop()
        client = _new_client(self._broker.client_id, self._logger)
        try:
            client.connect(self._broker.host, self._broker.port, keepalive=self._broker.keepalive)
        except OSError:
            self._logger.warning(
                "MQTT broker %s:%s unreachable; change broadcast disabled",
                self._broker.host,
                self._broker.port,
            )
            return
        client.loop_start()
        self._client = client

    def publish(self, event: str, **fields: Any) -> None:
        client = self._client
        if client is None:
            return
        try:
            client.publish(self._broker.topic, encode_change(event, **fields), qos=0)
        except (OSError, ValueError, FleetSerializationError):
            self._logger.debug("MQTT publish of %s failed", event, exc_info=True)

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
