"""Leveled logging to the console or to syslog."""

from __future__ import annotations

import sys
import time
from enum import Enum
from typing import Optional, TextIO

from .utils import PROGRAM_NAME

LOG_ERR = 3
LOG_WARNING = 4
LOG_INFO = 6
LOG_DEBUG = 7

_MAX_MESSAGE = 1023


class Verbosity(Enum):
    DEBUG = 0
    VERBOSE = 1
    QUIET = 2


class Logger:
    """Writes messages filtered by verbosity; errors go to stderr."""

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.VERBOSE,
        use_syslog: bool = False,
        timestamps: bool = False,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.verbosity = verbosity
        self.use_syslog = use_syslog
        self.timestamps = timestamps
        self._stdout = stdout
        self._stderr = stderr
        self._start: Optional[float] = None

    def _timestamp(self) -> str:
        if not self.timestamps:
            return ""
        now = time.monotonic()
        if self._start is None:
            self._start = now
        return f"[{now - self._start:8.2f}] "

    def print(self, priority: int, message: str) -> None:
        """Emit a message regardless of verbosity."""
        text = str(message)[:_MAX_MESSAGE]
        prefix = self._timestamp()
        if self.use_syslog:
            import syslog

            syslog.openlog(PROGRAM_NAME, syslog.LOG_PID | syslog.LOG_CONS, syslog.LOG_USER)
            syslog.syslog(priority, f"{prefix}{text}")
            syslog.closelog()
            return
        if priority == LOG_ERR:
            out = self._stderr if self._stderr is not None else sys.stderr
        else:
            out = self._stdout if self._stdout is not None else sys.stdout
        out.write(f"{prefix}{text}\n")

    def error(self, message: str) -> None:
        self.print(LOG_ERR, message)

    def warning(self, message: str) -> None:
        if self.verbosity != Verbosity.QUIET:
            self.print(LOG_WARNING, message)

    def info(self, message: str) -> None:
        if self.verbosity != Verbosity.QUIET:
            self.print(LOG_INFO, message)

    def debug(self, message: str) -> None:
        if self.verbosity == Verbosity.DEBUG:
            self.print(LOG_DEBUG, message)