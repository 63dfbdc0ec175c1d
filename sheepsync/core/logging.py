"""
Logging utilities for Sheep Sync.

Everything printed during a session is mirrored into logs/YYYY-MM-DD.log
with a timestamp per line. debug_log() writes diagnostic lines to that file
only; without an installed TeeOutput (e.g. under pytest) they are dropped.
"""

import re
import sys
from datetime import datetime
from pathlib import Path

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


def _stamp() -> str:
    return datetime.now().strftime("[%H:%M:%S]")


class TeeOutput:
    """Stand-in for sys.stdout that also appends complete lines to a log file."""

    def __init__(self, log_path: Path, version: str = None):
        self.terminal = sys.stdout
        self.log_file = open(log_path, "a", encoding="utf-8")
        self._pending = ""

        suffix = f" (sheepsync {version})" if version else ""
        self.log_file.write(f"\n--- session {datetime.now().isoformat(timespec='seconds')}{suffix} ---\n")
        self.log_file.flush()

    def write(self, message: str):
        self.terminal.write(message)
        self._pending += ANSI_ESCAPE.sub("", message)
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            if line.strip():
                self.log_file.write(f"{_stamp()} {line.rstrip()}\n")
        self.log_file.flush()

    def flush(self):
        self.terminal.flush()
        self.log_file.flush()

    def close(self):
        if self._pending.strip():
            self.log_file.write(f"{_stamp()} {self._pending.rstrip()}\n")
        self._pending = ""
        self.log_file.close()

    def log_only(self, message: str):
        """Append a line to the log file without echoing it."""
        self.log_file.write(f"{_stamp()} {message}\n")
        self.log_file.flush()


def install_tee(log_path: Path, version: str = None) -> TeeOutput:
    """Route stdout through a TeeOutput for the rest of the session."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    tee = TeeOutput(log_path, version=version)
    sys.stdout = tee
    return tee


def debug_log(message: str):
    """File-only diagnostic line, in the "COMPONENT | key=value" form."""
    log_only = getattr(sys.stdout, "log_only", None)
    if log_only is not None:
        log_only(message)
