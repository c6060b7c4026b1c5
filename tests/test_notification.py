import base64
import socket
from types import SimpleNamespace

import pytest
import requests
from conftest import FakeSocket

import notification
from dsc.constants import PartitionState, Subject
from dsc.encoder import MessageEncoder
from dsc.tracker import Change
from notification import (
    DeliveryResult,
    FailureReason,
    NotificationRouter,
    NotifyClient,
    NtfyNotifier,
    is_success,
    status_digit,
)

OK_RESPONSE = (
    b"HTTP/1.1 201 Created\r\n"
    b"Content-Type: application/json\r\n"
    b"\r\n"
    b'{"sid": "SM123"}'
)


def _client(sock, clock, service=None, poll_interval=0.5):
    return NotifyClient(
        host="api.example.com",
        path="/2010-04-01/Accounts/AC1/Messages.json",
        account_sid="AC1",
        auth_token="secret",
        from_number="15550001",
        to_number="15550002",
        service=service,
        clock=clock,
        connect=lambda: sock,
        poll_interval=poll_interval,
    )


# --- Status line classification ---

@pytest.mark.parametrize("line,delivered", [
    ("HTTP/1.1 200 OK", True),
    ("HTTP/1.1 201 Created", True),
    ("HTTP/1.1 404 Not Found", False),
    ("HTTP/1.1 500 Error", False),
    ("HTTP/1.1 301 Moved Permanently", False),
])
def test_status_classification(line, delivered):
    assert is_success(line) is delivered


def test_status_digit_scans_only_to_first_space():
    assert status_digit("HTTP/1.0 204 No Content") == "2"
    assert status_digit("garbage") is None
    assert status_digit("HTTP/1.1 ") is None


# --- Hand-framed request ---

def test_request_framing(clock):
    sock = FakeSocket(OK_RESPONSE, clock)
    client = _client(sock, clock)

    client.send("[Security system] ", "Zone alarm: 5")

    head, _, body = sock.sent.partition(b"\r\n\r\n")
    lines = head.split(b"\r\n")
    token = base64.b64encode(b"AC1:secret")
    assert lines == [
        b"POST /2010-04-01/Accounts/AC1/Messages.json HTTP/1.1",
        b"Authorization: Basic " + token,
        b"Host: api.example.com",
        b"User-Agent: dsc-bridge",
        b"Accept: */*",
        b"Content-Type: application/x-www-form-urlencoded",
        b"Content-Length: " + str(len(body)).encode(),
        b"Connection: Close",
    ]
    assert body == b"To=+15550002&From=+15550001&Body=[Security system] Zone alarm: 5"


def test_content_length_counts_encoded_bytes(clock):
    client = _client(FakeSocket(OK_RESPONSE, clock), clock)
    request = client.build_request("", "Zone ÅÄÖ")
    body = client.build_body("", "Zone ÅÄÖ")

    assert len(body) > len("To=+15550002&From=+15550001&Body=Zone ÅÄÖ")
    assert f"Content-Length: {len(body)}\r\n".encode() in request


# --- Responses ---

@pytest.mark.parametrize("status", [b"200 OK", b"201 Created"])
def test_success_statuses_are_delivered(clock, status):
    sock = FakeSocket(b"HTTP/1.1 " + status + b"\r\n\r\n{}", clock)
    result = _client(sock, clock).send("", "Partition 1 in alarm")

    assert result.delivered
    assert result.reason is None
    assert sock.closed


@pytest.mark.parametrize("status", [b"404 Not Found", b"500 Error"])
def test_error_statuses_fail_with_body(clock, status):
    sock = FakeSocket(b"HTTP/1.1 " + status + b"\r\nX: y\r\n\r\n{\"message\": \"bad\"}", clock)
    result = _client(sock, clock).send("", "Partition 1 in alarm")

    assert not result.delivered
    assert result.reason == FailureReason.NON_SUCCESS_STATUS
    assert result.status_line == "HTTP/1.1 " + status.decode()
    assert result.body == '{"message": "bad"}'
    assert sock.closed


def test_remaining_bytes_are_drained(clock):
    sock = FakeSocket(OK_RESPONSE, clock)
    _client(sock, clock).send("", "x")
    assert sock.response == b""


def test_no_response_times_out_after_three_seconds(clock, panel):
    sock = FakeSocket(clock=clock, silent_polls=None)
    start = clock.now

    result = _client(sock, clock, service=panel.service).send("", "Fire alarm")

    assert result == DeliveryResult.failed(FailureReason.RESPONSE_TIMEOUT)
    assert clock.now - start == pytest.approx(3.0)
    assert panel.service_calls == 6
    assert sock.closed


def test_panel_serviced_while_waiting(clock, panel):
    sock = FakeSocket(OK_RESPONSE, clock, silent_polls=4)

    result = _client(sock, clock, service=panel.service).send("", "Fire alarm")

    assert result.delivered
    assert panel.service_calls == 7


def test_connection_failure(clock):
    def refuse():
        raise ConnectionRefusedError(111, "Connection refused")

    client = _client(None, clock)
    client._connect = refuse

    assert client.send("", "x") == DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)


def test_handshake_wait_services_panel(panel):
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    try:
        client = NotifyClient(
            host="127.0.0.1", port=server.getsockname()[1], path="/", account_sid="AC1",
            auth_token="secret", from_number="15550001", to_number="15550002",
            service=panel.service, response_timeout=0.2, poll_interval=0.01,
        )
        result = client.send("", "x")
    finally:
        server.close()

    assert result == DeliveryResult.failed(FailureReason.TRANSPORT_UNAVAILABLE)
    assert panel.service_calls > 1


def test_connection_closed_without_response(clock):
    sock = FakeSocket(b"", clock)
    result = _client(sock, clock).send("", "x")

    assert result.reason == FailureReason.TRANSPORT_UNAVAILABLE
    assert sock.closed


# --- ntfy.sh ---

def _fake_post(calls, status_code=200, reason="OK", text="{}", raises=None):
    def post(url, **kwargs):
        calls.append((url, kwargs))
        if raises is not None:
            raise raises
        return SimpleNamespace(status_code=status_code, reason=reason, text=text)
    return post


def test_ntfy_sends_title_priority_and_token(monkeypatch):
    calls = []
    monkeypatch.setattr(notification.requests, "post", _fake_post(calls))
    notifier = NtfyNotifier("https://ntfy.sh/alarm", title="Home", auth={'method': 'token', 'token': 'tk_1'})

    result = notifier.send("[Home] ", "Partition 1 in alarm", priority=5)

    assert result.delivered
    url, kwargs = calls[0]
    assert url == "https://ntfy.sh/alarm"
    assert kwargs["data"] == "[Home] Partition 1 in alarm".encode("utf-8")
    assert kwargs["headers"] == {"Title": "Home", "Priority": "5", "Authorization": "Bearer tk_1"}
    assert kwargs["auth"] is None


def test_ntfy_userpass_auth(monkeypatch):
    calls = []
    monkeypatch.setattr(notification.requests, "post", _fake_post(calls))
    notifier = NtfyNotifier("https://ntfy.sh/alarm", auth={'method': 'userpass', 'user': 'u', 'pass': 'p'})

    notifier.send("", "x")

    assert calls[0][1]["auth"] == ("u", "p")
    assert calls[0][1]["headers"]["Priority"] == "3"


@pytest.mark.parametrize("error,reason", [
    (requests.exceptions.Timeout(), FailureReason.RESPONSE_TIMEOUT),
    (requests.exceptions.ConnectionError(), FailureReason.TRANSPORT_UNAVAILABLE),
])
def test_ntfy_network_errors(monkeypatch, error, reason):
    monkeypatch.setattr(notification.requests, "post", _fake_post([], raises=error))
    assert NtfyNotifier("https://ntfy.sh/alarm").send("", "x").reason == reason


def test_ntfy_error_status(monkeypatch):
    monkeypatch.setattr(notification.requests, "post",
                        _fake_post([], status_code=403, reason="Forbidden", text="denied"))
    result = NtfyNotifier("https://ntfy.sh/alarm").send("", "x")

    assert result.reason == FailureReason.NON_SUCCESS_STATUS
    assert result.status_line == "HTTP 403 Forbidden"
    assert result.body == "denied"


# --- Routing ---

class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, prefix, message, priority=None):
        self.sent.append((prefix + message, priority))
        return DeliveryResult(True)


def _router(events=('alarm', 'armed', 'fire', 'zone_alarm', 'power', 'keypad', 'keybus')):
    notifier = RecordingNotifier()
    router = NotificationRouter([notifier], MessageEncoder(), events, prefix="[Home] ",
                                priorities={'alarm': 5, 'armed': 3})
    return router, notifier


def test_first_change_is_sent_outside_a_resync():
    router, notifier = _router()
    router.route(Change(Subject.PARTITION, 1, PartitionState.ARMED_AWAY))
    router.route(Change(Subject.PARTITION, 1, PartitionState.TRIGGERED))
    assert notifier.sent == [("[Home] Partition 1 armed away", 3), ("[Home] Partition 1 in alarm", 5)]


def test_resync_sets_baseline_then_changes_are_sent():
    router, notifier = _router()
    router.resyncing = True
    router.route(Change(Subject.PARTITION, 1, PartitionState.DISARMED))
    router.route(Change(Subject.FIRE, 1, True))
    router.resyncing = False
    assert notifier.sent == [("[Home] Partition 1 fire alarm", 3)]

    router.route(Change(Subject.PARTITION, 1, PartitionState.ARMED_AWAY))
    assert notifier.sent[-1] == ("[Home] Partition 1 armed away", 3)


def test_resync_repeats_are_suppressed():
    router, notifier = _router()
    router.route(Change(Subject.POWER_TROUBLE, 0, True))
    router.route(Change(Subject.POWER_TROUBLE, 0, True))
    assert notifier.sent == [("[Home] AC power trouble", 3)]


def test_keypad_triggers_always_sent():
    router, notifier = _router()
    router.route(Change(Subject.KEYPAD_PANIC, 0, True))
    router.route(Change(Subject.KEYPAD_PANIC, 0, True))
    assert len(notifier.sent) == 2


def test_disabled_categories_are_not_sent():
    router, notifier = _router(events=('alarm',))
    router.route(Change(Subject.ZONE_OPEN, 5, False))
    router.route(Change(Subject.ZONE_OPEN, 5, True))
    router.route(Change(Subject.FIRE, 1, True))
    assert notifier.sent == []
