"""
DSC Bridge Notification Handler

This module sends one-shot notifications for panel changes:
- NotifyClient: SMS through a hand-framed HTTPS POST (Twilio message resource)
- NtfyNotifier: push notifications to ntfy.sh using 'requests'
- NotificationRouter: picks which changes are worth a notification

Notifications are never queued or retried. A failed delivery is logged and
the run loop continues.
"""

import base64
import errno
import logging
import os
import select
import socket
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import requests

from dsc.constants import PartitionState, Subject
from dsc.encoder import MessageEncoder
from dsc.tracker import Change

log = logging.getLogger(__name__)


class FailureReason(Enum):
    TRANSPORT_UNAVAILABLE = 'transport_unavailable'
    RESPONSE_TIMEOUT = 'response_timeout'
    NON_SUCCESS_STATUS = 'non_success_status'


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    reason: Optional[FailureReason] = None
    status_line: str = ''
    body: str = ''

    @classmethod
    def failed(cls, reason: FailureReason, status_line: str = '', body: str = '') -> 'DeliveryResult':
        return cls(False, reason, status_line, body)


def status_digit(status_line: str) -> Optional[str]:
    """
    Returns the leading digit of the status code in an HTTP status line.

    Only the text up to the first space is skipped: 'HTTP/1.1 201 Created'
    gives '2'. Returns None when the line has no space.
    """
    index = status_line.find(' ')
    if index < 0 or index + 1 >= len(status_line):
        return None
    return status_line[index + 1]


def is_success(status_line: str) -> bool:
    return status_digit(status_line) == '2'


def _classify(status_line: str, body: str) -> DeliveryResult:
    if is_success(status_line):
        return DeliveryResult(True, None, status_line, body)
    return DeliveryResult.failed(FailureReason.NON_SUCCESS_STATUS, status_line, body)


# ============================================
# SMS (hand-framed HTTPS)
# ============================================

class NotifyClient:
    """
    Sends SMS through an HTTPS endpoint with a single hand-framed request.

    A fresh TLS connection is opened for every message and closed afterwards.
    While waiting for the response, `service` is called continuously so the
    panel decoder keeps draining its buffer.

    Args:
        host: Endpoint hostname (e.g. 'api.twilio.com')
        path: Request path
        account_sid: Account identifier, first half of the Basic auth token
        auth_token: Secret, second half of the Basic auth token
        from_number: Sender number, digits only
        to_number: Recipient number, digits only
        service: Called repeatedly while waiting for the response
        response_timeout: Seconds to wait for the first response byte
    """

    def __init__(self, host: str, path: str, account_sid: str, auth_token: str,
                 from_number: str, to_number: str, port: int = 443,
                 user_agent: str = 'dsc-bridge', response_timeout: float = 3.0,
                 service: Optional[Callable[[], object]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 connect: Optional[Callable[[], socket.socket]] = None,
                 poll_interval: float = 0.01, drain_timeout: float = 1.0):
        self.host = host
        self.port = port
        self.path = path
        self.from_number = from_number
        self.to_number = to_number
        self.user_agent = user_agent
        self.response_timeout = response_timeout
        self.service = service
        self.clock = clock
        self.poll_interval = poll_interval
        self.drain_timeout = drain_timeout
        self._connect = connect or self._open_tls
        credentials = f"{account_sid}:{auth_token}".encode('utf-8')
        self.auth = base64.b64encode(credentials).decode('ascii')

    def _service(self) -> None:
        if self.service is not None:
            self.service()

    def _open_tls(self) -> socket.socket:
        """
        Connects and completes the TLS handshake without blocking.

        The panel is serviced between socket polls; both steps together are
        bounded by `response_timeout`.
        """
        family, sock_type, proto, _, address = socket.getaddrinfo(
            self.host, self.port, type=socket.SOCK_STREAM)[0]
        raw = socket.socket(family, sock_type, proto)
        start = self.clock()
        try:
            raw.setblocking(False)
            error = raw.connect_ex(address)
            if error not in (0, errno.EINPROGRESS, errno.EWOULDBLOCK):
                raise OSError(error, os.strerror(error))
            while not select.select([], [raw], [], self.poll_interval)[1]:
                self._check_deadline(start, "connect")
            error = raw.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if error:
                raise OSError(error, os.strerror(error))
            sock = ssl.create_default_context().wrap_socket(
                raw, server_hostname=self.host, do_handshake_on_connect=False)
        except OSError:
            raw.close()
            raise

        try:
            while True:
                try:
                    sock.do_handshake()
                    break
                except ssl.SSLWantReadError:
                    select.select([sock], [], [], self.poll_interval)
                except ssl.SSLWantWriteError:
                    select.select([], [sock], [], self.poll_interval)
                self._check_deadline(start, "TLS handshake")
            sock.settimeout(self.response_timeout)
            return sock
        except OSError:
            sock.close()
            raise

    def _check_deadline(self, start: float, step: str) -> None:
        self._service()
        if self.clock() - start >= self.response_timeout:
            raise socket.timeout(f"{step} timed out after {self.response_timeout:.1f} s")

    def build_body(self, prefix: str, message: str) -> bytes:
        return f"To=+{self.to_number}&From=+{self.from_number}&Body={prefix}{message}".encode('utf-8')

    def build_request(self, prefix: str, message: str) -> bytes:
        body = self.build_body(prefix, message)
        head = (
            f"POST {self.path} HTTP/1.1\r\n"
            f"Authorization: Basic {self.auth}\r\n"
            f"Host: {self.host}\r\n"
            f"User-Agent: {self.user_agent}\r\n"
            "Accept: */*\r\n"
            "Content-Type: application/x-www-form-urlencoded\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: Close\r\n"
            "\r\n"
        )
        return head.encode('ascii') + body

    def send(self, prefix: str, message: str, priority: Optional[int] = None) -> DeliveryResult:
        """Sends one message. Never raises for network errors."""
        try:
            sock = self._connect()
        except OSError as e:
            log.error("SMS failed: unable to connect to %s:%d: %s", self.host, self.port, e)
            return DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)

        try:
            sock.sendall(self.build_request(prefix, message))
            first = self._wait_for_response(sock)
            if first is None:
                log.error("SMS failed: no response from %s within %.1f s.", self.host, self.response_timeout)
                return DeliveryResult.failed(FailureReason.RESPONSE_TIMEOUT)
            if not first:
                log.error("SMS failed: %s closed the connection without a response.", self.host)
                return DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)

            response = (first + self._drain(sock)).decode('utf-8', errors='replace')
            status_line, _, rest = response.partition('\r\n')
            _, _, body = rest.partition('\r\n\r\n')
            result = _classify(status_line, body)
            if result.delivered:
                log.info("SMS sent: %s", status_line)
            else:
                log.error("SMS failed: %s - %s", status_line, body)
            return result
        except OSError as e:
            log.error("SMS failed: connection error with %s: %s", self.host, e)
            return DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)
        finally:
            sock.close()

    def _wait_for_response(self, sock: socket.socket) -> Optional[bytes]:
        """
        Waits for the first response byte, servicing the panel meanwhile.

        Returns the byte, b'' if the peer closed the connection, or None on
        timeout.
        """
        sock.settimeout(self.poll_interval)
        start = self.clock()
        while True:
            self._service()
            try:
                return sock.recv(1)
            except socket.timeout:
                pass
            if self.clock() - start >= self.response_timeout:
                return None

    def _drain(self, sock: socket.socket) -> bytes:
        """
        Reads everything left on the connection until it is closed, servicing
        the panel between reads. Gives up after `drain_timeout`.
        """
        sock.settimeout(self.poll_interval)
        start = self.clock()
        chunks = []
        while self.clock() - start < self.drain_timeout:
            self._service()
            try:
                chunk = sock.recv(1024)
            except socket.timeout:
                continue
            except OSError:
                break
            if not chunk:
                break
            chunks.append(chunk)
        return b''.join(chunks)


# ============================================
# ntfy.sh push
# ============================================

class NtfyNotifier:
    """Sends push notifications to an ntfy.sh topic URL."""

    def __init__(self, url: str, title: str = 'DSC Alarm', auth: Optional[Dict] = None,
                 timeout: float = 10.0, default_priority: int = 3):
        self.url = url
        self.title = title
        self.auth_config = auth or {}
        self.timeout = timeout
        self.default_priority = default_priority

    def send(self, prefix: str, message: str, priority: Optional[int] = None) -> DeliveryResult:
        headers = {
            "Title": self.title,
            "Priority": str(priority or self.default_priority),
        }

        auth_details = None
        method = self.auth_config.get('method')
        if method == 'token':
            headers['Authorization'] = f"Bearer {self.auth_config['token']}"
        elif method == 'userpass':
            auth_details = (self.auth_config['user'], self.auth_config['pass'])

        text = f"{prefix}{message}"
        log.info("Sending push notification (priority %s) to %s: %s", headers['Priority'], self.url, text)
        try:
            response = requests.post(
                self.url,
                data=text.encode('utf-8'),
                headers=headers,
                timeout=self.timeout,
                auth=auth_details
            )
        except requests.exceptions.Timeout:
            log.error("Push notification failed: request to %s timed out.", self.url)
            return DeliveryResult.failed(FailureReason.RESPONSE_TIMEOUT)
        except requests.exceptions.RequestException as e:
            log.error("Push notification failed: %s", e)
            return DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)

        status_line = f"HTTP {response.status_code} {response.reason}"
        result = _classify(status_line, response.text)
        if result.delivered:
            log.info("Push notification sent.")
        else:
            log.error("Push notification failed: %s - %s", status_line, response.text)
        return result


# ============================================
# Routing
# ============================================

def category(change: Change) -> str:
    """Maps a change to its notification category."""
    subject = change.subject
    if subject == Subject.PARTITION:
        return 'alarm' if change.value == PartitionState.TRIGGERED else 'armed'
    if subject == Subject.FIRE:
        return 'fire'
    if subject == Subject.ZONE_OPEN:
        return 'zone'
    if subject == Subject.ZONE_ALARM:
        return 'zone_alarm'
    if subject == Subject.POWER_TROUBLE:
        return 'power'
    if subject == Subject.TROUBLE:
        return 'trouble'
    if subject == Subject.KEYBUS:
        return 'keybus'
    return 'keypad'


def is_alert(change: Change) -> bool:
    """True for changes that report a problem rather than a normal state."""
    if change.subject == Subject.PARTITION:
        return change.value == PartitionState.TRIGGERED
    if change.subject == Subject.KEYBUS:
        return not change.value
    if change.subject == Subject.ZONE_OPEN:
        return False
    return bool(change.value)


class NotificationRouter:
    """
    Forwards changes to the notifiers, once per actual change.

    The router remembers the last value it saw per fact and never sends the
    same value twice in a row. While `resyncing` is set (a full status
    replay after a bus reconnection), a fact seen for the first time only
    sets a baseline unless it is an alert.
    """

    def __init__(self, notifiers: Iterable, encoder: MessageEncoder, events: Iterable[str],
                 prefix: str = '', priorities: Optional[Dict[str, int]] = None,
                 default_priority: int = 3):
        self.notifiers = list(notifiers)
        self.encoder = encoder
        self.events = set(events)
        self.prefix = prefix
        self.priorities = priorities or {}
        self.default_priority = default_priority
        self.resyncing = False
        self._last: Dict[Tuple[Subject, int], object] = {}

    def route(self, change: Change) -> List[DeliveryResult]:
        if not self.notifiers:
            return []

        key = (change.subject, change.number)
        previous = self._last.get(key)
        self._last[key] = change.value
        one_shot = change.subject in (Subject.KEYPAD_FIRE, Subject.KEYPAD_AUX, Subject.KEYPAD_PANIC)

        if not one_shot:
            if previous == change.value:
                return []
            if previous is None and self.resyncing and not is_alert(change):
                log.debug("Baseline for %s %d: %s", change.subject.value, change.number, change.value)
                return []

        event_category = category(change)
        if event_category not in self.events:
            return []

        message = self.encoder.describe(change)
        priority = self.priorities.get(event_category, self.default_priority)
        return [notifier.send(self.prefix, message, priority) for notifier in self.notifiers]
