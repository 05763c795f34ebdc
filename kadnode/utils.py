"""Shared helpers: identifiers, encodings, addresses and formatting."""

from __future__ import annotations

import ipaddress
import os
import re
import socket
from dataclasses import dataclass
from typing import Iterable, Optional, Union

PROGRAM_NAME = "kadnode"
PROGRAM_VERSION = "2.4.0"

ID_BINARY_LENGTH = 20
ID_BASE16_LENGTH = 40
ID_BASE32_LENGTH = 32

LPD_ADDR4 = "239.192.152.143"
LPD_ADDR6 = "ff15::efc0:988f"
CMD_PATH = "/tmp/kadnode/kadnode_cmd.sock"
NSS_PATH = "/tmp/kadnode/kadnode_nss.sock"
LPD_PORT = 6771
DHT_PORT = 6881
DNS_PORT = 3535

QUERY_TLD_DEFAULT = "p2p"
QUERY_MAX_SIZE = 256

INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

# Crockford base32 alphabet in lower case: 0-9a-z without 'i', 'l', 'o' and 'u'.
BASE32_ALPHABET = "0123456789abcdefghjkmnpqrstvwxyz"
_BASE32_INDEX = {char: index for index, char in enumerate(BASE32_ALPHABET)}
_HEX_DIGITS = "0123456789abcdef"
_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)
_INT_PATTERN = re.compile(r"\s*[+-]?\d+")
_MAX_ADDRESS_TEXT = 254


@dataclass(frozen=True)
class Option:
    """A named command option with its argument count and code."""

    name: str
    num_args: int
    code: int


@dataclass(frozen=True)
class Address:
    """An IPv4 or IPv6 address with a port."""

    family: int
    ip: bytes
    port: int = 0

    def __post_init__(self) -> None:
        expected = {socket.AF_INET: 4, socket.AF_INET6: 16}.get(self.family)
        if expected is None:
            raise ValueError(f"unsupported address family: {self.family}")
        if len(self.ip) != expected:
            raise ValueError(f"invalid address length {len(self.ip)} for family")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"invalid port: {self.port}")

    @property
    def host(self) -> str:
        return socket.inet_ntop(self.family, self.ip)

    def with_port(self, port: int) -> "Address":
        """Return the same host with another port."""
        return Address(self.family, self.ip, port)

    def is_localhost(self) -> bool:
        """True for 127.0.0.1 and ::1."""
        return ipaddress.ip_address(self.ip) in (
            ipaddress.IPv4Address("127.0.0.1"),
            ipaddress.IPv6Address("::1"),
        )

    def is_multicast(self) -> bool:
        return ipaddress.ip_address(self.ip).is_multicast

    def same_host(self, other: "Address") -> bool:
        """Compare family and address, ignoring the port."""
        return self.family == other.family and self.ip == other.ip

    def to_sockaddr(self) -> tuple:
        if self.family == socket.AF_INET6:
            return (self.host, self.port, 0, 0)
        return (self.host, self.port)

    @classmethod
    def from_sockaddr(cls, sockaddr: tuple) -> "Address":
        host = str(sockaddr[0]).split("%", 1)[0]
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        return cls(family, socket.inet_pton(family, host), int(sockaddr[1]))

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def setargs(args: str, max_args: int) -> list[str]:
    """Split a command line into whitespace separated words."""
    words = args.split()
    if len(words) > max_args:
        raise ValueError("too many arguments")
    return words


def find_option(options: Iterable[Option], name: Optional[str]) -> Optional[Option]:
    if name is None:
        return None
    return next((option for option in options if option.name == name), None)


def port_valid(port: int) -> bool:
    return 0 < port <= 65536


def parse_int(text: str, default: int) -> int:
    """Parse a whole decimal integer, or return the default."""
    if not _INT_PATTERN.fullmatch(text):
        return default
    value = int(text)
    if INT_MIN <= value < INT_MAX:
        return value
    return default


def base16_encoded_size(byte_count: int) -> int:
    return byte_count * 2


def base16_decoded_size(char_count: int) -> int:
    return (char_count + 1) // 2


def base16_decode(text: str, max_size: Optional[int] = None) -> bytes:
    """Decode lower case hexadecimal text."""
    if max_size is not None and max_size < base16_decoded_size(len(text)):
        raise ValueError("output size too small")
    if len(text) % 2:
        raise ValueError("odd number of hex digits")
    if any(char not in _HEX_DIGITS for char in text):
        raise ValueError("invalid hex character")
    return bytes.fromhex(text)


def base16_encode(data: bytes) -> str:
    return data.hex()


def base32_encoded_size(byte_count: int) -> int:
    bits = byte_count * 8
    return bits // 5 + (1 if bits % 5 else 0)


def base32_decoded_size(char_count: int) -> int:
    return (char_count * 5) // 8


def base32_decode(text: str, max_size: Optional[int] = None) -> bytes:
    """Decode lower case Crockford base32 text."""
    if max_size is not None and max_size < base32_decoded_size(len(text)):
        raise ValueError("output size too small")
    value = 0
    for char in text:
        index = _BASE32_INDEX.get(char)
        if index is None:
            raise ValueError(f"invalid base32 character: {char!r}")
        value = (value << 5) | index
    if max_size is not None and text and 5 * (len(text) - 1) >= 8 * max_size:
        raise ValueError("output size too small")
    total_bits = 5 * len(text)
    byte_count = total_bits // 8
    return (value >> (total_bits - 8 * byte_count)).to_bytes(byte_count, "big")


def base32_encode(data: bytes) -> str:
    """Encode bytes as lower case Crockford base32, zero padding the last symbol."""
    if not data:
        return ""
    bit_count = 8 * len(data)
    padding = (-bit_count) % 5
    value = int.from_bytes(data, "big") << padding
    symbols = (bit_count + padding) // 5
    return "".join(
        BASE32_ALPHABET[(value >> (5 * shift)) & 0x1F]
        for shift in reversed(range(symbols))
    )


def has_tld(text: str, tld: str) -> bool:
    """Check whether the part after the last dot equals tld."""
    dot = text.rfind(".")
    return dot >= 0 and text[dot + 1:] == tld


def query_sanitize(query: str, tld: str = QUERY_TLD_DEFAULT, max_size: int = QUERY_MAX_SIZE) -> str:
    """Lower case a query and strip the configured TLD.

    example.com.p2p => example.com
    eXample.COM.P2P => example.com
    """
    if len(query) + 1 > max_size:
        raise ValueError("query too long")
    lowered = query.translate(_ASCII_LOWER)
    if has_tld(lowered, tld):
        lowered = lowered[: len(lowered) - (len(tld) + 1)]
    return lowered


def random_bytes(size: int) -> bytes:
    return os.urandom(size)


def port_random() -> int:
    """Return a random port other than 0."""
    while True:
        port = int.from_bytes(random_bytes(2), "little")
        if port != 0:
            return port


def file_exists(path: Union[str, os.PathLike]) -> bool:
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False


def format_id(node_id: bytes) -> str:
    if len(node_id) != ID_BINARY_LENGTH:
        raise ValueError(f"identifier must be {ID_BINARY_LENGTH} bytes")
    return base32_encode(node_id)


def format_family(family: int) -> str:
    if family == socket.AF_INET:
        return "IPv4"
    if family == socket.AF_INET6:
        return "IPv6"
    if family == socket.AF_UNSPEC:
        return "IPv4+IPv6"
    return "<invalid>"


def _resolve(host: str, port: str, family: int) -> Address:
    try:
        infos = socket.getaddrinfo(host, port, family, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as exc:
        raise ValueError(f"cannot resolve {host!r}: {exc}") from exc
    for info_family, _, _, _, sockaddr in infos:
        if family in (socket.AF_UNSPEC, info_family) and info_family in (
            socket.AF_INET,
            socket.AF_INET6,
        ):
            return Address.from_sockaddr(sockaddr)
    raise ValueError(f"no usable address for {host!r}")


def parse_address(text: str, default_port: Union[str, int], family: int = socket.AF_UNSPEC) -> Address:
    """Parse or resolve an address with optional port.

    Accepted forms: "<address>", "<ipv4_address>:<port>", "[<address>]"
    and "[<address>]:<port>". Hosts may be names, ports may be services.
    """
    if len(text) >= _MAX_ADDRESS_TEXT + 1:
        raise ValueError("address too long")
    default = str(default_port)

    if text.startswith("["):
        close = text.rfind("]")
        if close < 0:
            raise ValueError(f"missing ']' in {text!r}")
        host = text[1:close]
        rest = text[close + 1:]
        if rest == "":
            port = default
        elif rest.startswith(":"):
            port = rest[1:]
        else:
            raise ValueError(f"port expected in {text!r}")
    elif text.count(":") == 1:
        host, port = text.split(":", 1)
    else:
        host, port = text, default

    return _resolve(host, port, family)


def format_bytes(count: int) -> str:
    """Format a byte count with a decimal unit."""
    if count < 1000:
        text = f"{count} B"
    else:
        units = ((10**6, 10**3, "K"), (10**9, 10**6, "M"), (10**12, 10**9, "G"),
                 (10**15, 10**12, "T"), (10**18, 10**15, "P"))
        for limit, divisor, unit in units:
            if count < limit:
                text = f"{count / divisor:.1f} {unit}"
                break
        else:
            text = f"{count / 10**18:.1f} E"
    return text[:7]


def format_duration(seconds: int) -> str:
    """Format a duration using its two largest units."""
    prefix = "-" if seconds < 0 else ""
    seconds = abs(int(seconds))
    years, seconds = divmod(seconds, 365 * 24 * 60 * 60)
    days, seconds = divmod(seconds, 24 * 60 * 60)
    hours, seconds = divmod(seconds, 60 * 60)
    minutes, seconds = divmod(seconds, 60)

    if years > 0:
        return f"{prefix}{years}y{days}d"
    if days > 0:
        return f"{prefix}{days}d{hours}h"
    if hours > 0:
        return f"{prefix}{hours}h{minutes}m"
    if minutes > 0:
        return f"{prefix}{minutes}m{seconds}s"
    return f"{prefix}{seconds}s"