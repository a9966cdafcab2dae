# -*- codeing = utf-8 -*-
"""Raw-socket ICMP echo requests."""

import logging
import os
import select
import socket
import struct
import time

LOGGER = logging.getLogger(__name__)

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
_HEADER_FORMAT = ">BBHHH"
_PAYLOAD_BODY = b"abcdefghijklmnopqrstuvwabcdefghi"
_RECEIVE_BUFFER = 1024


def checksum(data: bytes) -> int:
    """Compute the internet checksum of an ICMP packet."""

    n = len(data)
    m = n % 2
    total = 0
    for i in range(0, n - m, 2):
        total += data[i] + (data[i + 1] << 8)
        total = (total >> 16) + (total & 0xFFFF)
    if m:
        total += data[-1]
        total = (total >> 16) + (total & 0xFFFF)
    answer = ~total & 0xFFFF
    # Summed little-endian above, packed big-endian below.
    return answer >> 8 | (answer << 8 & 0xFF00)


def build_echo_request(identifier: int, sequence: int,
                       payload: bytes = _PAYLOAD_BODY) -> bytes:
    header = struct.pack(_HEADER_FORMAT, ICMP_ECHO_REQUEST, 0, 0, identifier,
                         sequence)
    packet_checksum = checksum(header + payload)
    header = struct.pack(_HEADER_FORMAT, ICMP_ECHO_REQUEST, 0,
                         packet_checksum, identifier, sequence)
    return header + payload


def parse_echo_reply(packet: bytes):
    """Return ``(type, identifier, sequence)`` from an IPv4 datagram carrying ICMP."""

    if not packet:
        return None
    header_length = (packet[0] & 0x0F) * 4
    icmp_header = packet[header_length:header_length + 8]
    if len(icmp_header) < 8:
        return None
    packet_type, _code, _checksum, identifier, sequence = struct.unpack(
        _HEADER_FORMAT, icmp_header)
    return packet_type, identifier, sequence


class IcmpEchoSocket:
    """Own one raw ICMP socket and exchange echo request/reply pairs over it.

    Creating the socket needs raw-socket privileges (root or ``CAP_NET_RAW``
    on Linux); the ``PermissionError`` raised otherwise is left to the caller.
    """

    def __init__(self, identifier=None) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_RAW,
                                     socket.getprotobyname("icmp"))
        if identifier is None:
            identifier = os.getpid()
        self.identifier = identifier & 0xFFFF

    def send_request(self, dst_addr: str, sequence: int) -> float:
        packet = build_echo_request(self.identifier, sequence)
        sent_at = time.monotonic()
        self._socket.sendto(packet, (dst_addr, 0))
        return sent_at

    def wait_reply(self, sequence: int, sent_at: float, timeout: float) -> float:
        """Wait for the matching echo reply; return the round trip or ``-1``."""

        deadline = sent_at + max(float(timeout), 0.0)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return -1
            ready, _, _ = select.select([self._socket], [], [], remaining)
            if not ready:
                return -1
            received_at = time.monotonic()
            packet, _addr = self._socket.recvfrom(_RECEIVE_BUFFER)
            parsed = parse_echo_reply(packet)
            if parsed is None:
                continue
            packet_type, identifier, reply_sequence = parsed
            if (packet_type == ICMP_ECHO_REPLY and identifier == self.identifier
                    and reply_sequence == sequence):
                return received_at - sent_at

    def ping(self, dst_addr: str, sequence: int, timeout: float) -> float:
        sent_at = self.send_request(dst_addr, sequence)
        rtt = self.wait_reply(sequence, sent_at, timeout)
        if rtt >= 0:
            LOGGER.debug(
                "reachability.icmp.reply destination=%s sequence=%s rtt_ms=%s",
                dst_addr,
                sequence,
                int(rtt * 1000),
            )
        return rtt

    def close(self) -> None:
        self._socket.close()


__all__ = [
    "IcmpEchoSocket",
    "build_echo_request",
    "checksum",
    "parse_echo_reply",
]
