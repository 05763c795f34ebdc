"""Process setup on Unix: signals, control sockets, daemon mode, pid file, privileges."""

from __future__ import annotations

import errno
import os
import pwd
import signal
import socket
import sys
from dataclasses import dataclass
from typing import Optional, Union

from .log import Logger

_logger = Logger()


@dataclass
class RunState:
    """Whether the main loop should keep running."""

    running: bool = True

    def request_stop(self) -> None:
        """Ask for a soft stop; a second request exits at once."""
        if not self.running:
            sys.exit(1)
        self.running = False


def install_signal_handlers(state: RunState) -> None:
    """Stop on SIGINT and SIGTERM and ignore SIGPIPE."""

    def handler(signum, frame) -> None:
        state.request_stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_IGN)


def _socket_in_use(path: str) -> bool:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as probe:
        try:
            probe.connect(path)
        except OSError:
            return False
    return True


def create_unix_socket(path: Union[str, os.PathLike]) -> socket.socket:
    """Create a listening Unix socket at path, creating its directory if needed."""
    path = os.fspath(path)
    if not path:
        raise ValueError("empty socket path")
    directory = os.path.dirname(path) or "."

    if _socket_in_use(path):
        raise OSError(errno.EADDRINUSE, f"Socket already in use: {path}")

    try:
        os.unlink(path)
    except OSError:
        pass
    else:
        _logger.warning(f"Removed stale file: {path}")

    if not os.path.exists(directory):
        try:
            os.mkdir(directory, 0o755)
        except OSError as exc:
            raise OSError(
                exc.errno, f"Cannot create directory {directory} {exc.strerror}"
            ) from exc

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(path)
    except OSError:
        remove_unix_socket(path, sock)
        raise

    try:
        os.chmod(path, 0o777)
    except OSError:
        pass
    sock.listen(5)
    return sock


def remove_unix_socket(path: Union[str, os.PathLike], sock: socket.socket) -> None:
    """Close the socket and remove its file and (if empty) its directory."""
    path = os.fspath(path)
    sock.close()
    for remove, target in ((os.unlink, path), (os.rmdir, os.path.dirname(path) or ".")):
        try:
            remove(target)
        except OSError:
            pass


def daemonize() -> None:
    """Fork into the background and become a session leader."""
    pid = os.fork()
    if pid != 0:
        os._exit(0)
    os.setsid()
    os.umask(0)


def write_pidfile(pid: int, path: Union[str, os.PathLike]) -> None:
    """Write pid to path, replacing an existing file."""
    if os.path.exists(path):
        _logger.warning(f"PID file already exists: {os.fspath(path)}")
        os.unlink(path)

    try:
        with open(path, "w") as fp:
            fp.write(f"{pid}\n")
    except OSError:
        try:
            os.unlink(path)
        except OSError:
            pass
        raise


def _can_regain_root() -> bool:
    for change in (os.setuid, os.setgid):
        try:
            change(0)
        except OSError:
            continue
        return True
    return False


def drop_privileges(user: Optional[str]) -> None:
    """Switch to user when running as root; does nothing otherwise."""
    if user is None or os.getuid() != 0:
        return

    try:
        entry = pwd.getpwnam(user)
    except KeyError as exc:
        raise PermissionError("Dropping uid 0 failed. Set a valid user.") from exc

    os.environ["HOME"] = entry.pw_dir

    try:
        os.setgid(entry.pw_gid)
    except OSError as exc:
        raise PermissionError("Unable to drop group privileges") from exc

    try:
        os.setuid(entry.pw_uid)
    except OSError as exc:
        raise PermissionError("Unable to drop user privileges") from exc

    if _can_regain_root():
        raise PermissionError("We still have root privileges")