# -*- codeing = utf-8 -*-
"""Socket-level and command-line connectivity helpers."""

import logging
import math
import os
import shutil
import socket
from typing import List, Optional

LOGGER = logging.getLogger(__name__)

ECHO_PORT = 7
UDP_ECHO_PAYLOAD = b"reachability-probe"
_UDP_RECEIVE_BUFFER = 4096


def check_socket_connectivity(host: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            pass
        LOGGER.info("reachability.tcp.success host=%s port=%s", host, port)
        return True
    except (OSError, UnicodeError) as exc:
        LOGGER.warning(
            "reachability.tcp.offline host=%s port=%s error=%s", host, port, exc
        )
        return False


def check_udp_echo(
    host: str,
    port: int,
    timeout: float,
    *,
    payload: bytes = UDP_ECHO_PAYLOAD,
) -> bool:
    """Send ``payload`` as one datagram and expect the same bytes back."""

    try:
        address_info = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError) as exc:
        LOGGER.warning(
            "reachability.udp.resolve_failed host=%s port=%s error=%s",
            host,
            port,
            exc,
        )
        return False

    family, sock_type, proto, _canonname, sockaddr = address_info[0]
    try:
        with socket.socket(family, sock_type, proto) as sock:
            sock.settimeout(timeout)
            sock.connect(sockaddr)
            sock.send(payload)
            reply = sock.recv(_UDP_RECEIVE_BUFFER)
    except OSError as exc:
        LOGGER.warning(
            "reachability.udp.offline host=%s port=%s error=%s", host, port, exc
        )
        return False

    if reply == payload:
        LOGGER.info("reachability.udp.success host=%s port=%s", host, port)
        return True

    LOGGER.warning(
        "reachability.udp.unexpected_reply host=%s port=%s size=%s",
        host,
        port,
        len(reply),
    )
    return False


def build_ping_command(host: str, timeout: float) -> List[str]:
    """Build a single-echo ``ping`` invocation for the current platform."""

    timeout = max(float(timeout), 0.0)
    if os.name == "nt":
        wait_ms = max(int(math.ceil(timeout * 1000)), 1)
        return ["ping", "-n", "1", "-w", str(wait_ms), host]
    wait_seconds = max(int(math.ceil(timeout)), 1)
    return ["ping", "-c", "1", "-W", str(wait_seconds), host]


def find_ping_executable() -> Optional[str]:
    return shutil.which("ping")


__all__ = [
    "ECHO_PORT",
    "build_ping_command",
    "check_socket_connectivity",
    "check_udp_echo",
    "find_ping_executable",
]
