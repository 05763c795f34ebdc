"""Bootstrapping from a peer file and from static peers.

As long as no nodes are known, peers listed in a file or given on the
command line are pinged. Good nodes are written back to the file.
"""

from __future__ import annotations

import os
import socket
from typing import Callable, Optional, TextIO, Union

from .log import Logger
from .utils import DHT_PORT, Address, parse_address

EXPORT_MIN_UPTIME = 5 * 60
IMPORT_DELAY = 10
IMPORT_INTERVAL = 5 * 60
EXPORT_INTERVAL = 24 * 60 * 60

PingFunc = Callable[[Address], bool]
CountFunc = Callable[[bool], int]
ExportFunc = Callable[[TextIO], int]


class PeerFile:
    """Imports peers while the node table is empty and exports good nodes.

    ping(address) pings a node, count_nodes(good) counts known (or good)
    nodes and export_peers(fp) writes known nodes to fp and returns their
    number.
    """

    def __init__(
        self,
        path: Optional[Union[str, os.PathLike]],
        ping: PingFunc,
        count_nodes: CountFunc,
        export_peers: ExportFunc,
        family: int = socket.AF_UNSPEC,
        startup_time: int = 0,
        now: int = 0,
        is_running: Optional[Callable[[], bool]] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.path = path
        self.ping = ping
        self.count_nodes = count_nodes
        self.export_peers = export_peers
        self.family = family
        self.startup_time = startup_time
        self.is_running = is_running if is_running is not None else (lambda: True)
        self.logger = logger if logger is not None else Logger()
        self.peers: list[str] = []
        self.import_time = now + IMPORT_DELAY
        self.export_time = now + EXPORT_INTERVAL

    def add_peer(self, address: str) -> None:
        """Add a static peer; the newest is tried first."""
        self.peers.insert(0, address)

    def _try(self, address: str, family: int) -> tuple[bool, bool]:
        try:
            addr = parse_address(address, DHT_PORT, family)
        except ValueError:
            return False, False
        return True, bool(self.ping(addr))

    def import_peer(self, address: str) -> int:
        """Resolve and ping one peer; return 1 if it was pinged, else 0."""
        parsed = pinged = False
        for family in (socket.AF_INET6, socket.AF_INET):
            if self.family in (socket.AF_UNSPEC, family):
                ok, sent = self._try(address, family)
                parsed = parsed or ok
                pinged = pinged or sent

        if not parsed:
            self.logger.warning(f"PEERFILE: Cannot resolve address: '{address}'")
            return 0
        if not pinged:
            self.logger.warning(f"PEERFILE: Cannot ping address: '{address}'")
            return 0
        return 1

    def import_file(self) -> int:
        """Ping every peer listed in the peer file; return how many were pinged."""
        if self.path is None:
            return 0
        try:
            fp = open(self.path, "r", newline="")
        except OSError as exc:
            self.logger.warning(
                f"PEERFILE: Cannot open file for peer import: {self.path} ({exc.strerror})"
            )
            return 0

        count = 0
        with fp:
            for line in fp:
                if not self.is_running():
                    break
                entry = line.split("\n", 1)[0].split("\r", 1)[0]
                if not entry or entry.startswith("#"):
                    continue
                count += self.import_peer(entry)

        self.logger.info(f"PEERFILE: Imported {count} peers from {self.path}")
        return count

    def import_static(self) -> int:
        """Ping all static peers; return how many were pinged."""
        count = sum(self.import_peer(peer) for peer in self.peers)
        if count > 0:
            self.logger.info(f"PEERFILE: Imported {count} static peers.")
        return count

    def export(self, now: int) -> int:
        """Write known good nodes to the peer file; return the number written."""
        if self.path is None:
            return 0

        if now - self.startup_time < EXPORT_MIN_UPTIME:
            self.logger.info(
                "PEERFILE: No peers exported. KadNode needs to run at least 5 minutes."
            )
            return 0

        if self.count_nodes(True) == 0:
            self.logger.info("PEERFILE: No peers to export.")
            return 0

        try:
            fp = open(self.path, "w")
        except OSError as exc:
            self.logger.warning(
                f"PEERFILE: Cannot open file '{self.path}' for peer export: {exc.strerror}"
            )
            return 0

        self.logger.info(f"PEERFILE: Export peers to {self.path}")
        with fp:
            count = self.export_peers(fp)

        if count <= 0:
            self.logger.info("PEERFILE: No peers to export.")
            return 0

        self.logger.info(f"PEERFILE: {count} peers exported: {self.path}")
        return count

    def handle(self, now: int) -> None:
        """Periodic work: import while no nodes are known, export once a day."""
        if self.import_time <= now and self.count_nodes(False) == 0:
            self.import_file()
            self.import_static()
            self.import_time = now + IMPORT_INTERVAL

        if self.export_time <= now and self.count_nodes(True) != 0:
            self.export(now)
            self.export_time = now + EXPORT_INTERVAL