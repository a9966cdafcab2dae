import logging
import socket
import subprocess
import sys
import threading
from pathlib import Path

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from reachability import http_probe  # noqa: E402  pylint: disable=wrong-import-position
from reachability import icmp_probe  # noqa: E402  pylint: disable=wrong-import-position
from reachability import network_probe  # noqa: E402  pylint: disable=wrong-import-position
from reachability import probes  # noqa: E402  pylint: disable=wrong-import-position
from reachability.events import execute_tick  # noqa: E402
from reachability.exceptions import (  # noqa: E402
    ConfigurationError,
    ProbeSetupError,
)


class DummyEchoSocket:
    instances = []

    def __init__(self, identifier=None):
        self.identifier = 1234
        self.closed = False
        self.pings = []
        self.rtt = 0.01
        DummyEchoSocket.instances.append(self)

    def ping(self, dst_addr, sequence, timeout):
        self.pings.append((dst_addr, sequence, timeout))
        return self.rtt

    def close(self):
        self.closed = True


class DummyResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.closed = False

    def close(self):
        self.closed = True


class FakeProcess:
    def __init__(self, returncode=0, hang=False):
        self.returncode = returncode
        self.hang = hang
        self.killed = False
        self.wait_calls = 0

    def wait(self, timeout=None):
        self.wait_calls += 1
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(cmd="ping", timeout=timeout)
        return -9 if self.killed else self.returncode

    def poll(self):
        if self.hang and not self.killed:
            return None
        return -9 if self.killed else self.returncode

    def kill(self):
        self.killed = True


@pytest.fixture(autouse=True)
def fake_privileged_mechanisms(monkeypatch):
    DummyEchoSocket.instances = []
    monkeypatch.setattr(icmp_probe, "IcmpEchoSocket", DummyEchoSocket)
    monkeypatch.setattr(network_probe, "find_ping_executable",
                        lambda: "/bin/ping")


def _closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        ("icmp", probes.IcmpProbe),
        ("ICMP", probes.IcmpProbe),
        ("Icmp", probes.IcmpProbe),
        ("external", probes.ExternalProbe),
        ("External", probes.ExternalProbe),
        ("http", probes.HttpProbe),
        ("HTTP", probes.HttpProbe),
        ("tcp", probes.TcpProbe),
        ("Tcp", probes.TcpProbe),
        ("udp", probes.UdpProbe),
        ("UDP", probes.UdpProbe),
    ],
)
def test_create_probe_matches_modes_case_insensitively(mode, expected):
    probe = probes.create_probe(mode, timeout=2.0, port=8080)
    try:
        assert type(probe) is expected
        assert probe.timeout == 2.0
        assert probe.port == 8080
    finally:
        probe.close()


@pytest.mark.parametrize("mode", ["", "ping", "icmp6", "tcp ", None, "SNMP"])
def test_create_probe_rejects_unknown_modes_without_building(monkeypatch, mode):
    built = []

    def counting_factory(**kwargs):
        built.append(kwargs)
        raise AssertionError("no probe should be built")

    monkeypatch.setattr(
        probes,
        "PROBE_TYPES",
        {name: counting_factory for name in probes.PROBE_TYPES},
    )

    with pytest.raises(ConfigurationError):
        probes.create_probe(mode)
    assert built == []


def test_icmp_mode_spellings_build_equivalent_probes():
    built = [probes.create_probe(mode) for mode in ("icmp", "ICMP", "Icmp")]

    assert {type(probe) for probe in built} == {probes.IcmpProbe}
    assert len(DummyEchoSocket.instances) == 3
    for probe in built:
        assert probe.attempt("127.0.0.1") is True
    assert [sock.pings[0][1] for sock in DummyEchoSocket.instances] == [1, 1, 1]


def test_icmp_probe_reports_missing_privileges(monkeypatch):

    def denied(identifier=None):
        raise PermissionError("Operation not permitted")

    monkeypatch.setattr(icmp_probe, "IcmpEchoSocket", denied)

    with pytest.raises(ProbeSetupError) as excinfo:
        probes.create_probe("ICMP")
    assert "root" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, PermissionError)


def test_icmp_probe_timeout_is_a_failed_attempt(caplog):
    probe = probes.create_probe("icmp", timeout=0.5)
    DummyEchoSocket.instances[0].rtt = -1

    caplog.clear()
    with caplog.at_level(logging.INFO):
        assert probe.attempt("127.0.0.1") is False
    assert probe.last_duration() >= 0
    assert "reachability.icmp.timeout" in caplog.text


def test_icmp_probe_sequence_increases_per_attempt():
    probe = probes.create_probe("icmp")
    probe.attempt("127.0.0.1")
    probe.attempt("127.0.0.1")
    probe.attempt("127.0.0.1")

    assert [ping[1] for ping in DummyEchoSocket.instances[0].pings] == [1, 2, 3]


def test_icmp_probe_unresolvable_host_fails(monkeypatch):
    probe = probes.create_probe("icmp")

    def fail_resolve(host):
        raise socket.gaierror("Name or service not known")

    monkeypatch.setattr(probes.socket, "gethostbyname", fail_resolve)

    assert probe.attempt("no-such-host.invalid") is False
    assert DummyEchoSocket.instances[0].pings == []


def test_icmp_probe_close_releases_socket():
    probe = probes.create_probe("icmp")
    probe.close()
    assert DummyEchoSocket.instances[0].closed is True


def test_last_duration_is_unmeasured_before_any_attempt():
    probe = probes.create_probe("tcp")
    assert probe.last_duration() == probes.UNMEASURED


def test_external_probe_requires_ping_command(monkeypatch):
    monkeypatch.setattr(network_probe, "find_ping_executable", lambda: None)

    with pytest.raises(ProbeSetupError):
        probes.create_probe("external")


@pytest.mark.parametrize(("returncode", "expected"), [(0, True), (1, False),
                                                       (2, False)])
def test_external_probe_uses_exit_status(monkeypatch, returncode, expected):
    commands = []
    process = FakeProcess(returncode=returncode)

    def fake_popen(command, **kwargs):
        commands.append(command)
        return process

    monkeypatch.setattr(probes.subprocess, "Popen", fake_popen)

    probe = probes.create_probe("external", timeout=3)
    assert probe.attempt("192.0.2.1") is expected
    assert commands[0][0] == "ping"
    assert commands[0][-1] == "192.0.2.1"
    assert process.wait_calls == 1
    assert probe.last_duration() >= 0


def test_external_probe_kills_and_reaps_hung_ping(monkeypatch, caplog):
    process = FakeProcess(hang=True)
    monkeypatch.setattr(probes.subprocess, "Popen",
                        lambda command, **kwargs: process)

    probe = probes.create_probe("external", timeout=0.1)
    caplog.clear()
    with caplog.at_level(logging.INFO):
        assert probe.attempt("192.0.2.1") is False

    assert process.killed is True
    assert process.wait_calls == 2
    assert "reachability.ping.killed" in caplog.text


def test_external_probe_close_reaps_running_child():
    probe = probes.create_probe("external")
    process = FakeProcess(hang=True)
    probe._process = process

    probe.close()

    assert process.killed is True
    assert process.wait_calls == 1


def test_external_probe_rejects_option_like_hosts(monkeypatch):

    def fail_popen(*args, **kwargs):  # pragma: no cover - should not be called
        raise AssertionError("ping must not be spawned")

    monkeypatch.setattr(probes.subprocess, "Popen", fail_popen)

    probe = probes.create_probe("external")
    assert probe.attempt("-f") is False


def test_external_probe_spawn_failure_is_a_failed_attempt(monkeypatch):

    def missing(*args, **kwargs):
        raise FileNotFoundError("ping")

    monkeypatch.setattr(probes.subprocess, "Popen", missing)

    probe = probes.create_probe("external")
    assert probe.attempt("192.0.2.1") is False


@pytest.mark.parametrize("status_code", [200, 301, 404, 500, 503])
def test_http_probe_treats_any_response_as_reachable(monkeypatch, status_code):
    calls = []

    def fake_get(self, url, timeout):
        calls.append((url, timeout))
        return DummyResponse(status_code)

    monkeypatch.setattr(requests.Session, "get", fake_get)

    probe = probes.create_probe("http", timeout=2.5)
    assert probe.attempt("example.com") is True
    assert calls == [("http://example.com", 2.5)]


def test_http_probe_transport_error_is_unreachable(monkeypatch, caplog):

    def fake_get(self, url, timeout):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests.Session, "get", fake_get)

    probe = probes.create_probe("http")
    caplog.clear()
    with caplog.at_level(logging.INFO):
        assert probe.attempt("example.com") is False
    assert "reachability.http.error" in caplog.text
    assert "connection refused" in caplog.text
    assert probe.last_duration() >= 0


@pytest.mark.parametrize(
    ("host", "port", "expected"),
    [
        ("example.com", None, "http://example.com"),
        ("https://example.com/health", None, "https://example.com/health"),
        ("example.com", 8080, "http://example.com:8080"),
        ("https://example.com:9443/x", 8080, "https://example.com:9443/x"),
        ("https://example.com/status?full=1", 8443,
         "https://example.com:8443/status?full=1"),
        ("http://[2001:db8::1]/metrics", 8080, "http://[2001:db8::1]:8080/metrics"),
        (" example.org ", None, "http://example.org"),
    ],
)
def test_build_probe_url(host, port, expected):
    assert http_probe.build_probe_url(host, port) == expected


def test_tcp_probe_connects_to_listening_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        probe = probes.create_probe("tcp", timeout=1, port=port)
        assert probe.attempt("127.0.0.1") is True
        assert probe.last_duration() >= 0


def test_tcp_probe_refused_connection_is_a_failed_attempt(caplog):
    probe = probes.create_probe("tcp", timeout=1, port=_closed_port())

    caplog.clear()
    with caplog.at_level(logging.INFO):
        assert probe.attempt("127.0.0.1") is False
    assert "reachability.tcp.offline" in caplog.text
    assert probe.last_duration() >= 0


def test_tcp_probe_defaults_to_echo_port(monkeypatch):
    observed = {}

    def fake_check(host, port, timeout):
        observed.update(host=host, port=port, timeout=timeout)
        return True

    monkeypatch.setattr(network_probe, "check_socket_connectivity", fake_check)

    probe = probes.create_probe("tcp", timeout=1.5)
    assert probe.attempt("192.0.2.1") is True
    assert observed == {"host": "192.0.2.1", "port": 7, "timeout": 1.5}


def _udp_echo_server(reply=None):
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)

    def serve():
        try:
            data, address = server.recvfrom(4096)
            server.sendto(data if reply is None else reply, address)
        except OSError:
            pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return server, thread


def test_udp_probe_expects_echoed_payload():
    server, thread = _udp_echo_server()
    try:
        probe = probes.create_probe("udp", timeout=2,
                                    port=server.getsockname()[1])
        assert probe.attempt("127.0.0.1") is True
    finally:
        thread.join(5)
        server.close()


def test_udp_probe_rejects_unexpected_reply(caplog):
    server, thread = _udp_echo_server(reply=b"something else")
    try:
        probe = probes.create_probe("udp", timeout=2,
                                    port=server.getsockname()[1])
        caplog.clear()
        with caplog.at_level(logging.INFO):
            assert probe.attempt("127.0.0.1") is False
        assert "reachability.udp.unexpected_reply" in caplog.text
    finally:
        thread.join(5)
        server.close()


def test_udp_probe_without_reply_times_out():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
        silent.bind(("127.0.0.1", 0))
        probe = probes.create_probe("udp", timeout=0.2,
                                    port=silent.getsockname()[1])
        assert probe.attempt("127.0.0.1") is False
        assert probe.last_duration() >= 0.15


# A label longer than 63 characters cannot be IDNA-encoded.
OVERLONG_LABEL_HOST = "a" * 64 + ".example.com"


@pytest.mark.parametrize(
    ("mode", "log_key"),
    [
        ("tcp", "reachability.tcp.offline"),
        ("udp", "reachability.udp.resolve_failed"),
        ("icmp", "reachability.icmp.resolve_failed"),
    ],
)
def test_unencodable_host_name_is_a_failed_attempt(caplog, mode, log_key):
    probe = probes.create_probe(mode, timeout=1, port=7)
    events = []

    caplog.clear()
    with caplog.at_level(logging.INFO):
        event = execute_tick(probe, OVERLONG_LABEL_HOST, events.append)

    assert events == [event]
    assert event.success is False
    assert event.host == OVERLONG_LABEL_HOST
    assert event.duration >= 0
    assert log_key in caplog.text
