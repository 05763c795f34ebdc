"""Socket creation and a polling event loop for registered handlers."""

from __future__ import annotations

import os
import select
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .log import Logger
from .utils import format_family, parse_address

READABLE = 1
MAX_HANDLERS = 16

Callback = Callable[[int, int], None]

_logger = Logger()


class NetError(Exception):
    """A socket could not be set up or a handler is not usable."""


@dataclass
class _Handler:
    fd: int
    callback: Optional[Callback]


class EventLoop:
    """Calls handlers when their descriptor is readable and about once a second.

    A handler is called as callback(revents, fd); revents is -1 for the
    first call when the loop starts, READABLE when data is waiting and 0
    for the periodic call.
    """

    def __init__(self, max_handlers: int = MAX_HANDLERS, poll_timeout: float = 1.0) -> None:
        self.max_handlers = max_handlers
        self.poll_timeout = poll_timeout
        self.running = True
        self.now = 0
        self._handlers: list[_Handler] = []
        self._removed = False

    @property
    def handlers(self) -> list[tuple[int, Callback]]:
        return [(h.fd, h.callback) for h in self._handlers if h.callback is not None]

    def add_handler(self, fd: int, callback: Callback) -> None:
        """Register a callback; fd may be -1 for a purely periodic handler."""
        if callback is None:
            raise ValueError("callback is None")
        if len(self._handlers) >= self.max_handlers:
            raise NetError("no more space for handlers")
        if fd >= 0:
            os.set_blocking(fd, False)
        self._handlers.append(_Handler(fd, callback))

    def remove_handler(self, fd: int, callback: Callback) -> None:
        """Unregister a handler; takes effect at the end of the current round."""
        if callback is None:
            raise ValueError("callback is None")
        for handler in self._handlers:
            if handler.callback == callback and handler.fd == fd:
                handler.callback = None
                self._removed = True
                return
        raise NetError("handler not found")

    def _compress(self) -> None:
        # Fill each removed slot with the last entry, as a fixed table would.
        index = 0
        while index < len(self._handlers):
            if self._handlers[index].callback is None:
                last = self._handlers.pop()
                if index < len(self._handlers):
                    self._handlers[index] = last
                continue
            index += 1

    def _poll(self) -> set[int]:
        fds = [h.fd for h in self._handlers if h.fd >= 0 and h.callback is not None]
        if not fds:
            time.sleep(self.poll_timeout)
            return set()
        readable, _, _ = select.select(fds, [], [], self.poll_timeout)
        return set(readable)

    def run(self, clock: Callable[[], float] = time.time) -> None:
        """Run until stop() is called or polling fails."""
        call_all_time = int(clock())

        for handler in list(self._handlers):
            if handler.callback is not None:
                handler.callback(-1, handler.fd)

        while self.running:
            try:
                ready = self._poll()
            except (OSError, ValueError):
                break

            self.now = int(clock())
            call_all = self.now - call_all_time >= 1
            if call_all:
                call_all_time = self.now

            for handler in list(self._handlers):
                if handler.callback is None:
                    continue
                revents = READABLE if handler.fd in ready else 0
                if revents or call_all:
                    handler.callback(revents, handler.fd)

            if self._removed:
                self._compress()
                self._removed = False

    def stop(self) -> None:
        self.running = False

    def close(self) -> None:
        """Close all registered descriptors and forget the handlers."""
        for handler in self._handlers:
            if handler.fd >= 0:
                try:
                    os.close(handler.fd)
                except OSError:
                    pass
        self._handlers.clear()
        self._removed = False


def create_socket(
    name: str,
    ifname: Optional[str] = None,
    protocol: int = socket.IPPROTO_UDP,
    family: int = socket.AF_INET,
    allowed_family: int = socket.AF_UNSPEC,
) -> socket.socket:
    """Create a non-blocking socket, optionally bound to a network device."""
    if allowed_family not in (socket.AF_UNSPEC, family):
        raise NetError(f"{name}: {format_family(family)} is disabled")

    kind = socket.SOCK_STREAM if protocol == socket.IPPROTO_TCP else socket.SOCK_DGRAM
    try:
        sock = socket.socket(family, kind, protocol)
    except OSError as exc:
        raise NetError(f"{name}: Failed to create socket: {exc}") from exc

    try:
        try:
            sock.setblocking(False)
        except OSError as exc:
            raise NetError(f"{name}: Failed to make socket nonblocking: {exc}") from exc

        if ifname:
            option = getattr(socket, "SO_BINDTODEVICE", None)
            if option is None:
                raise NetError(f"{name}: Bind to device not supported on this platform.")
            try:
                sock.setsockopt(socket.SOL_SOCKET, option, ifname.encode())
            except OSError as exc:
                raise NetError(f"{name}: Unable to bind to device {ifname}: {exc}") from exc

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as exc:
            raise NetError(f"{name}: Unable to set SO_REUSEADDR: {exc}") from exc
    except BaseException:
        sock.close()
        raise

    return sock


def bind_socket(
    name: str,
    address: str,
    port: int,
    ifname: Optional[str] = None,
    protocol: int = socket.IPPROTO_UDP,
    allowed_family: int = socket.AF_UNSPEC,
) -> socket.socket:
    """Create a socket bound to address and port; TCP sockets also listen."""
    try:
        sockaddr = parse_address(address, "0", socket.AF_UNSPEC).with_port(port)
    except ValueError as exc:
        raise NetError(f"{name}: Failed to parse IP address '{address}'") from exc

    sock = create_socket(name, ifname, protocol, sockaddr.family, allowed_family)
    try:
        if sockaddr.family == socket.AF_INET6:
            try:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            except OSError as exc:
                raise NetError(
                    f"{name}: Failed to set IPV6_V6ONLY for {sockaddr}: {exc}"
                ) from exc

        try:
            sock.bind(sockaddr.to_sockaddr())
        except OSError as exc:
            raise NetError(f"{name}: Failed to bind socket to {sockaddr}: {exc}") from exc

        if protocol == socket.IPPROTO_TCP:
            try:
                sock.listen(5)
            except OSError as exc:
                raise NetError(f"{name}: Failed to listen on {sockaddr}: {exc}") from exc
    except BaseException:
        sock.close()
        raise

    if ifname:
        _logger.info(f"{name}: Bind to {sockaddr}, interface {ifname}")
    else:
        _logger.info(f"{name}: Bind to {sockaddr}")
    return sock