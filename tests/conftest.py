"""Shared pytest fixtures and fakes for the DSC bridge tests.

The fakes stand in for the collaborators at the bridge boundary: the panel
decoder, the paho-mqtt client, the TLS socket and the monotonic clock.
"""

import socket
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from dsc.state import PanelState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePanel:
    """Panel source with a plain PanelState and a record of written keys."""

    def __init__(self):
        self.state = PanelState()
        self.service_calls = 0
        self.writes = []

    def service(self) -> bool:
        self.service_calls += 1
        return self.state.status_changed

    def write(self, keys: str, partition: int = 1) -> None:
        self.writes.append((keys, partition))


class FakeMqttClient:
    """
    Stand-in for paho.mqtt.client.Client driven with loop(timeout=0).

    Callbacks are queued and run from loop(), like the real client.
    """

    def __init__(self, accept: bool = True, auto_ack: bool = True):
        self.accept = accept
        self.auto_ack = auto_ack
        self.connected = False
        self.lost = False
        self.published = []
        self.subscriptions = []
        self.will = None
        self.credentials = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._pending = []
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def username_pw_set(self, username, password):
        self.credentials = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False):
        self.will = (topic, payload, retain)

    def connect(self, host, port=1883, keepalive=60):
        self.connect_calls += 1
        if not self.accept:
            raise ConnectionRefusedError(111, "Connection refused")
        self.lost = False
        if self.auto_ack:
            self.ack()
        return mqtt.MQTT_ERR_SUCCESS

    def ack(self):
        def _connected():
            self.connected = True
            self.on_connect(self, None, {}, 0, None)
        self._pending.append(_connected)

    def drop(self):
        """Simulates a lost network connection."""
        self.connected = False
        self.lost = True

    def deliver(self, topic, payload):
        message = SimpleNamespace(topic=topic, payload=payload)
        self._pending.append(lambda: self.on_message(self, None, message))

    def loop(self, timeout=1.0):
        if self.lost:
            return mqtt.MQTT_ERR_CONN_LOST
        pending, self._pending = self._pending, []
        for callback in pending:
            callback()
        return mqtt.MQTT_ERR_SUCCESS

    def publish(self, topic, payload=None, qos=0, retain=False):
        if not self.connected:
            return SimpleNamespace(rc=mqtt.MQTT_ERR_NO_CONN)
        self.published.append((topic, payload, retain))
        return SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)

    def subscribe(self, topic, qos=0):
        self.subscriptions.append(topic)
        return mqtt.MQTT_ERR_SUCCESS, len(self.subscriptions)

    def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False


class FakeSocket:
    """
    Scripted TLS socket: times out `silent_polls` times, then returns the
    response bytes. Each timeout advances the clock by the poll timeout.
    """

    def __init__(self, response: bytes = b'', clock: FakeClock = None, silent_polls: int = 0):
        self.response = response
        self.clock = clock
        self.silent_polls = silent_polls
        self.sent = b''
        self.timeout = None
        self.closed = False

    def settimeout(self, value):
        self.timeout = value

    def sendall(self, data):
        self.sent += data

    def recv(self, size):
        if self.silent_polls is None or self.silent_polls > 0:
            if self.silent_polls is not None:
                self.silent_polls -= 1
            if self.clock is not None:
                self.clock.advance(self.timeout or 0)
            raise socket.timeout("timed out")
        chunk, self.response = self.response[:size], self.response[size:]
        return chunk

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def mqtt_client():
    return FakeMqttClient()
