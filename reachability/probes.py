# -*- codeing = utf-8 -*-
"""Probe strategies behind the uniform ``attempt``/``last_duration`` interface."""

from __future__ import annotations

import logging
import socket
import subprocess
import threading
import time
from typing import Callable, Dict, Optional

import requests

from . import http_probe
from . import icmp_probe
from . import network_probe
from .exceptions import ConfigurationError, ProbeSetupError

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
UNMEASURED = -1.0
# Extra time granted to ``ping`` on top of its own ``-W`` deadline before it is killed.
_EXTERNAL_GRACE_PERIOD = 1.0


class Probe:
    """Strategy interface that performs one reachability check against a host."""

    mode = ""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT,
                 port: Optional[int] = None) -> None:
        self.timeout = float(timeout)
        self.port = port
        self._duration = UNMEASURED

    def attempt(self, host: str) -> bool:
        """Probe ``host`` once and remember how long the attempt took."""

        started = time.perf_counter()
        try:
            success = bool(self._ping(host))
        finally:
            self._duration = time.perf_counter() - started
        return success

    def last_duration(self) -> float:
        return self._duration

    def close(self) -> None:
        """Release the underlying mechanism handle."""

    def _ping(self, host: str) -> bool:  # pragma: no cover - interface contract
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout!r}, port={self.port!r})"


class IcmpProbe(Probe):

    mode = "ICMP"

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT,
                 port: Optional[int] = None) -> None:
        super().__init__(timeout=timeout, port=port)
        try:
            self._socket = icmp_probe.IcmpEchoSocket()
        except PermissionError as exc:
            raise ProbeSetupError(
                "ICMP mode needs raw socket privileges; run as root or grant "
                "CAP_NET_RAW, or use the EXTERNAL mode") from exc
        except OSError as exc:
            raise ProbeSetupError(
                f"Unable to open a raw ICMP socket: {exc}") from exc
        self._sequence = 0

    def _ping(self, host: str) -> bool:
        self._sequence = self._sequence % 0xFFFF + 1
        try:
            dst_addr = socket.gethostbyname(host)
        except (OSError, UnicodeError) as exc:
            LOGGER.warning("reachability.icmp.resolve_failed host=%s error=%s",
                           host, exc)
            return False

        try:
            rtt = self._socket.ping(dst_addr, self._sequence, self.timeout)
        except OSError as exc:
            LOGGER.warning("reachability.icmp.failure host=%s error=%s", host,
                           exc)
            return False

        if rtt < 0:
            LOGGER.warning(
                "reachability.icmp.timeout host=%s destination=%s sequence=%s",
                host,
                dst_addr,
                self._sequence,
            )
            return False
        LOGGER.info("reachability.icmp.success host=%s", host)
        return True

    def close(self) -> None:
        self._socket.close()


class ExternalProbe(Probe):
    """Run the operating system's ``ping`` utility once per attempt."""

    mode = "EXTERNAL"

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT,
                 port: Optional[int] = None) -> None:
        super().__init__(timeout=timeout, port=port)
        if network_probe.find_ping_executable() is None:
            raise ProbeSetupError(
                "EXTERNAL mode needs the 'ping' command on PATH")
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None

    def _ping(self, host: str) -> bool:
        if host.startswith("-"):
            LOGGER.warning("reachability.ping.invalid_host host=%s", host)
            return False

        command = network_probe.build_ping_command(host, self.timeout)
        with self._lock:
            try:
                process = subprocess.Popen(
                    command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as exc:
                LOGGER.warning("reachability.ping.spawn_failed host=%s error=%s",
                               host, exc)
                return False
            self._process = process
        try:
            returncode = process.wait(timeout=self.timeout +
                                      _EXTERNAL_GRACE_PERIOD)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            LOGGER.warning("reachability.ping.killed host=%s timeout=%s", host,
                           self.timeout)
            return False
        finally:
            with self._lock:
                self._process = None

        if returncode == 0:
            LOGGER.info("reachability.ping.success host=%s", host)
            return True
        LOGGER.warning("reachability.ping.failure host=%s returncode=%s", host,
                       returncode)
        return False

    def close(self) -> None:
        with self._lock:
            process = self._process
            self._process = None
        if process is not None and process.poll() is None:
            process.kill()
            process.wait()


class HttpProbe(Probe):

    mode = "HTTP"

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT,
                 port: Optional[int] = None) -> None:
        super().__init__(timeout=timeout, port=port)
        self._session = requests.Session()

    def _ping(self, host: str) -> bool:
        url = http_probe.build_probe_url(host, self.port)
        return http_probe.probe_http_service(self._session, url, self.timeout)

    def close(self) -> None:
        self._session.close()


class TcpProbe(Probe):

    mode = "TCP"

    def _ping(self, host: str) -> bool:
        port = network_probe.ECHO_PORT if self.port is None else self.port
        return network_probe.check_socket_connectivity(host, port,
                                                       self.timeout)


class UdpProbe(Probe):

    mode = "UDP"

    def _ping(self, host: str) -> bool:
        port = network_probe.ECHO_PORT if self.port is None else self.port
        return network_probe.check_udp_echo(host, port, self.timeout)


ProbeFactory = Callable[..., Probe]

PROBE_TYPES: Dict[str, ProbeFactory] = {
    IcmpProbe.mode: IcmpProbe,
    ExternalProbe.mode: ExternalProbe,
    HttpProbe.mode: HttpProbe,
    TcpProbe.mode: TcpProbe,
    UdpProbe.mode: UdpProbe,
}

SUPPORTED_MODES = tuple(PROBE_TYPES)


def create_probe(
    mode: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    port: Optional[int] = None,
) -> Probe:
    """Build the probe registered for ``mode`` (case-insensitive)."""

    key = str(mode).upper() if mode else ""
    probe_type = PROBE_TYPES.get(key)
    if probe_type is None:
        raise ConfigurationError(
            f"Must set a valid mode: {mode!r} is not one of "
            f"{', '.join(SUPPORTED_MODES)}")
    probe = probe_type(timeout=timeout, port=port)
    LOGGER.debug("reachability.probe.created mode=%s probe=%r", key, probe)
    return probe


__all__ = [
    "DEFAULT_TIMEOUT",
    "ExternalProbe",
    "HttpProbe",
    "IcmpProbe",
    "PROBE_TYPES",
    "Probe",
    "SUPPORTED_MODES",
    "TcpProbe",
    "UNMEASURED",
    "UdpProbe",
    "create_probe",
]
