"""Helpers around the DHT: value decoding, packet prefixes, hashing and traffic."""

from __future__ import annotations

import socket
from typing import Optional, Union

from .utils import Address

TRAFFIC_DURATION_SECONDS = 8
MAX_PACKET_SIZE = 1500

_IPV4_RECORD = 4 + 2
_IPV6_RECORD = 16 + 2


class TrafficCounter:
    """Counts traffic in total and per second over a sliding window."""

    def __init__(self, duration: int = TRAFFIC_DURATION_SECONDS) -> None:
        if duration < 1:
            raise ValueError("duration must be at least one second")
        self.duration = duration
        self.in_total = 0
        self.out_total = 0
        self._last_time = 0
        self._in = [0] * duration
        self._out = [0] * duration

    def _expire(self, now: int) -> None:
        elapsed = now - self._last_time
        if elapsed <= 0:
            return
        for step in range(1, min(elapsed, self.duration) + 1):
            slot = (self._last_time + step) % self.duration
            self._in[slot] = 0
            self._out[slot] = 0
        self._last_time = now

    def record(self, in_bytes: int, out_bytes: int, now: int) -> None:
        """Add received and sent byte counts at time now (seconds)."""
        self._expire(now)
        self.in_total += in_bytes
        self.out_total += out_bytes
        slot = now % self.duration
        self._in[slot] += in_bytes
        self._out[slot] += out_bytes

    def rates(self, now: int) -> tuple[int, int]:
        """Return the average (in, out) bytes per second over the window."""
        self._expire(now)
        return sum(self._in) // self.duration, sum(self._out) // self.duration


def dht_hash(secret: bytes, ip: bytes, port: Union[int, bytes]) -> bytes:
    """Mix an 8 byte secret with an address and port into an 8 byte token."""
    if len(secret) != 8:
        raise ValueError("secret must be 8 bytes")
    if isinstance(port, int):
        if not 0 <= port <= 65535:
            raise ValueError(f"invalid port: {port}")
        port = port.to_bytes(2, "big")
    if len(port) != 2:
        raise ValueError("port must be 2 bytes")

    if len(ip) == 4:
        mask = ip * 2
    elif len(ip) == 16:
        mask = bytes(a ^ b for a, b in zip(ip[:8], ip[8:]))
    else:
        raise ValueError("address must be 4 or 16 bytes")

    port_mask = bytes(port) * 4
    return bytes(s ^ m ^ p for s, m, p in zip(secret, mask, port_mask))


def to_address(raw: bytes, port: int) -> Address:
    """Build an address from 4 or 16 raw bytes and a port."""
    if len(raw) == 4:
        return Address(socket.AF_INET, bytes(raw), port)
    if len(raw) == 16:
        return Address(socket.AF_INET6, bytes(raw), port)
    raise ValueError(f"invalid address length: {len(raw)}")


def decode_values(data: bytes, family: int) -> list[Address]:
    """Decode compact peer values: address bytes followed by a big endian port.

    Incomplete trailing records are ignored.
    """
    if family == socket.AF_INET:
        size, ip_len = _IPV4_RECORD, 4
    elif family == socket.AF_INET6:
        size, ip_len = _IPV6_RECORD, 16
    else:
        raise ValueError(f"unsupported address family: {family}")

    count = len(data) // size
    records = (data[n * size:(n + 1) * size] for n in range(count))
    return [
        to_address(record[:ip_len], int.from_bytes(record[ip_len:], "big"))
        for record in records
    ]


def format_peer(ip: bytes, port: int) -> str:
    """Format raw address bytes and a port for display."""
    if len(ip) == 16:
        return f"[{socket.inet_ntop(socket.AF_INET6, ip)}]:{port}"
    if len(ip) == 4:
        return f"{socket.inet_ntop(socket.AF_INET, ip)}:{port}"
    return "<invalid address>"


def strip_isolation_prefix(packet: bytes, prefix: bytes) -> Optional[bytes]:
    """Remove the isolation prefix; None if the packet does not carry it."""
    if not prefix:
        return packet
    if len(packet) <= len(prefix) or not packet.startswith(prefix):
        return None
    return packet[len(prefix):]


def add_isolation_prefix(packet: bytes, prefix: bytes) -> bytes:
    """Prepend the isolation prefix; raises ValueError if the result is too big."""
    if not prefix:
        return packet
    combined = prefix + packet
    if len(combined) > MAX_PACKET_SIZE:
        raise ValueError("packet too big for prefix")
    return combined