from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest

from fleetsync._mqtt import ChangeEvent, ChangePublisher, FleetMqttRuntime, MqttBroker, decode_change, encode_change
from fleetsync.exceptions import FleetSerializationError


def test_encode_and_decode_change() -> None:
    payload = encode_change("route_completion", driverId="USR-001", completedRoutes=["RT-1"])

    event = decode_change("fleetsync/events", payload)

    assert event.event == "route_completion"
    assert event.driver_id == "USR-001"
    assert event.payload["completedRoutes"] == ["RT-1"]
    assert json.loads(payload)["event"] == "route_completion"


@pytest.mark.parametrize("raw", [b"\xff\xfe", b"not json", b"[1, 2]"])
def test_decode_change_rejects_garbage(raw: bytes) -> None:
    with pytest.raises(FleetSerializationError):
        decode_change("fleetsync/events", raw)


def test_decode_change_without_driver() -> None:
    event = decode_change("t", b'{"event": "data_update", "driverId": ""}')

    assert event.driver_id is None


class _FakeClient:
    def __init__(self) -> None:
        self.on_connect: Any = None
        self.on_message: Any = None
        self.on_disconnect: Any = None
        self.subscribed: list[str] = []
        self.published: list[tuple[str, bytes]] = []
        self.loop_started = False

    def connect(self, _host: str, _port: int, keepalive: int = 60) -> None:
        return None

    def loop_start(self) -> None:
        self.loop_started = True

    def loop_stop(self) -> None:
        self.loop_started = False

    def disconnect(self) -> None:
        return None

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append(topic)

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        self.published.append((topic, payload))


@pytest.mark.asyncio
async def test_runtime_forwards_parsed_events_to_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeClient()
    monkeypatch.setattr("fleetsync._mqtt._new_client", lambda _client_id, _logger: fake)
    received: list[ChangeEvent] = []
    runtime = FleetMqttRuntime(loop=asyncio.get_running_loop(), on_event=received.append)

    runtime.start(MqttBroker(host="broker", port=1883, topic="fleetsync/events"))
    fake.on_connect(fake, None, None, SimpleNamespace(value=0), None)
    fake.on_message(fake, None, SimpleNamespace(topic="fleetsync/events", payload=b'{"event": "driver_status"}'))
    fake.on_message(fake, None, SimpleNamespace(topic="fleetsync/events", payload=b"garbage"))
    await asyncio.sleep(0)

    assert runtime.is_running is True
    assert fake.subscribed == ["fleetsync/events"]
    assert [e.event for e in received] == ["driver_status"]

    runtime.stop()
    assert runtime.is_running is False
    assert fake.loop_started is False


def test_publisher_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeClient()
    monkeypatch.setattr("fleetsync._mqtt._new_client", lambda _client_id, _logger: fake)
    publisher = ChangePublisher(MqttBroker(host="broker", port=1883, topic="fleetsync/events"))

    publisher.publish("ignored")
    publisher.start()
    publisher.publish("data_update", collections=["bins"])

    assert [json.loads(p)["event"] for _, p in fake.published] == ["data_update"]

    def broken_publish(_topic: str, _payload: bytes, qos: int = 0) -> None:
        raise OSError("broker gone")

    fake.publish = broken_publish  # type: ignore[method-assign]
    publisher.publish("data_update")
    publisher.stop()
    assert publisher.is_running is False
