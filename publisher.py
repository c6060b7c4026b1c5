"""
DSC Bridge MQTT Publisher

Publishes panel status messages to an MQTT broker and receives commands.

The paho-mqtt client is driven synchronously from the bridge run loop with
loop(timeout=0): no background network thread, so every callback (including
command delivery) runs inside service().
"""

import logging
from typing import Any, Callable, Optional, Set

import paho.mqtt.client as mqtt

log = logging.getLogger(__name__)


class BusPublisher:
    """
    Fire-and-forget retained publisher with command subscription.

    Attributes:
        broker_host: MQTT broker hostname
        broker_port: MQTT broker port
        status_topic: Availability topic, carries the 'offline' last will
        on_command: Called with (topic, payload) for each received message
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        client_id: str = 'dscKeybusInterface',
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        status_topic: str = 'dsc/Status',
        on_command: Optional[Callable[[str, bytes], None]] = None,
        client: Optional[Any] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.client_id = client_id
        self.keepalive = keepalive
        self.status_topic = status_topic
        self.on_command = on_command

        if client is None:
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
            )
        self.client = client
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.will_set(status_topic, payload='offline', qos=0, retain=True)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = False
        self._subscribed: Set[str] = set()
        self._message_count = 0

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    # --- paho-mqtt callbacks ---

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code == 0:
            self._connected = True
            log.info("Connected to MQTT broker %s as '%s'.", self.broker, self.client_id)
        else:
            self._connected = False
            log.error("MQTT broker %s refused the connection: %s", self.broker, reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected = False
        self._subscribed.clear()
        log.warning("Disconnected from MQTT broker %s (reason: %s).", self.broker, reason_code)

    def _on_message(self, client, userdata, message) -> None:
        log.debug("Received message on %s: %r", message.topic, message.payload)
        if self.on_command is not None:
            self.on_command(message.topic, message.payload)

    # --- Transport interface used by the ConnectionSupervisor ---

    def connect(self) -> bool:
        """
        Opens the connection to the broker.

        Returns True once the CONNECT packet is sent; the connection counts
        as established only after the broker acknowledges it in service().
        """
        try:
            self.client.connect(self.broker_host, self.broker_port, keepalive=self.keepalive)
        except (OSError, ValueError) as e:
            log.error("Unable to connect to MQTT broker %s: %s", self.broker, e)
            return False
        log.debug("Connection to MQTT broker %s opened.", self.broker)
        return True

    def service(self) -> bool:
        """Pumps incoming and keepalive traffic. Returns the connection state."""
        rc = self.client.loop(timeout=0)
        if rc != mqtt.MQTT_ERR_SUCCESS and self._connected:
            log.warning("MQTT network loop failed (rc=%s), connection lost.", rc)
            self._connected = False
            self._subscribed.clear()
        return self._connected

    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        if self._connected:
            self.publish(self.status_topic, 'offline', retained=True)
        self.client.disconnect()
        self._connected = False
        self._subscribed.clear()
        log.info("Disconnected from MQTT broker after %d messages.", self._message_count)

    # --- Publishing ---

    def publish(self, topic: str, payload: str, retained: bool = True) -> bool:
        """
        Publishes one message. Failures are logged and absorbed: recovery is
        the resync performed after the next successful connection.
        """
        try:
            info = self.client.publish(topic, payload, qos=0, retain=retained)
        except (OSError, ValueError) as e:
            log.debug("Publish to %s failed: %s", topic, e)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            log.debug("Publish to %s failed (rc=%s).", topic, info.rc)
            return False
        self._message_count += 1
        log.debug("Published %s: %s", topic, payload)
        return True

    def ensure_subscribed(self, topic: str) -> None:
        """Subscribes to a topic once per connection. Safe to call every pass."""
        if not self._connected or topic in self._subscribed:
            return
        result, _mid = self.client.subscribe(topic)
        if result == mqtt.MQTT_ERR_SUCCESS:
            self._subscribed.add(topic)
            log.info("Subscribed to %s.", topic)
        else:
            log.warning("Subscribe to %s failed (rc=%s), will retry.", topic, result)
