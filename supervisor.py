"""
DSC Bridge Connection Supervisor

Keeps the bus transport connected with a fixed retry interval, and forces a
full status resync every time the connection is (re)established.
"""

import logging
import time
from enum import Enum
from typing import Callable, Protocol

log = logging.getLogger(__name__)


class Transport(Protocol):
    def connect(self) -> bool:
        ...

    def service(self) -> bool:
        ...


class LinkState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


class ConnectionSupervisor:
    """
    Drives a transport through DISCONNECTED -> CONNECTING -> CONNECTED.

    Args:
        transport: Object with connect() and service()
        on_connected: Called on every transition into CONNECTED
        retry_interval: Minimum seconds between connection attempts
        clock: Monotonic clock, in seconds
    """

    def __init__(self, transport: Transport, on_connected: Callable[[], None],
                 retry_interval: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.transport = transport
        self.on_connected = on_connected
        self.retry_interval = retry_interval
        self.clock = clock
        self.state = LinkState.DISCONNECTED
        self._last_attempt = None
        self.connect_count = 0

    def _attempt_due(self, now: float) -> bool:
        return self._last_attempt is None or now - self._last_attempt >= self.retry_interval

    def service(self) -> LinkState:
        """Called once per loop pass. Never waits."""
        now = self.clock()

        if self.state == LinkState.DISCONNECTED:
            if not self._attempt_due(now):
                return self.state
            self._last_attempt = now
            log.info("Connecting to %s...", getattr(self.transport, 'broker', 'transport'))
            if self.transport.connect():
                self.state = LinkState.CONNECTING
            else:
                log.warning("Connection attempt failed, retrying in %.1f s.", self.retry_interval)
                return self.state

        if self.state == LinkState.CONNECTING:
            if self.transport.service():
                self._enter_connected()
            elif now - self._last_attempt >= self.retry_interval:
                log.warning("No acknowledgement within %.1f s, retrying.", self.retry_interval)
                self.state = LinkState.DISCONNECTED
            return self.state

        if self.state == LinkState.CONNECTED and not self.transport.service():
            log.warning("Connection lost, reconnecting.")
            self.state = LinkState.DISCONNECTED
            self._last_attempt = None

        return self.state

    def _enter_connected(self) -> None:
        self.state = LinkState.CONNECTED
        self.connect_count += 1
        log.info("Connection established (%d so far), resyncing full status.", self.connect_count)
        self.on_connected()

    @property
    def connected(self) -> bool:
        return self.state == LinkState.CONNECTED
