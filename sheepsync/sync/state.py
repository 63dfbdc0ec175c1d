"""
Sync state and retry backoff for Sheep Sync.
"""

from dataclasses import dataclass

IDLE = "idle"
DOWNLOADING = "downloading"
PAUSED = "paused"
ERROR = "error"


@dataclass(frozen=True)
class SyncState:
    """
    Observable state of the sync engine.

    One of Idle, Downloading(current, total), Paused or Error(message).
    Only the engine creates transitions; the status surface reads them.
    """
    kind: str = IDLE
    current: int = 0
    total: int = 0
    message: str = ""

    @classmethod
    def idle(cls) -> "SyncState":
        return cls(IDLE)

    @classmethod
    def downloading(cls, current: int, total: int) -> "SyncState":
        return cls(DOWNLOADING, current=current, total=total)

    @classmethod
    def paused(cls) -> "SyncState":
        return cls(PAUSED)

    @classmethod
    def error(cls, message: str) -> "SyncState":
        return cls(ERROR, message=message)

    @property
    def is_idle(self) -> bool:
        return self.kind == IDLE

    @property
    def is_downloading(self) -> bool:
        return self.kind == DOWNLOADING

    @property
    def is_paused(self) -> bool:
        return self.kind == PAUSED

    @property
    def is_error(self) -> bool:
        return self.kind == ERROR

    def describe(self) -> str:
        """Status line for the menu / --status output."""
        if self.kind == DOWNLOADING:
            return f"Downloading {self.current} of {self.total}..."
        if self.kind == PAUSED:
            return "Paused"
        if self.kind == ERROR:
            return f"Error: {self.message}"
        return "Up to date"


class RetryState:
    """
    Exponential backoff for cycle-level failures.

    The delay starts at base, doubles after each failure, is capped at
    maximum, and drops back to base on any success.
    """

    def __init__(self, base: float = 600, maximum: float = 86400):
        if base <= 0 or maximum < base:
            raise ValueError(f"invalid backoff range: base={base}, maximum={maximum}")
        self.base = base
        self.maximum = maximum
        self.delay = base

    def record_failure(self) -> float:
        """Return the delay to wait before retrying, then double it for next time."""
        wait = self.delay
        self.delay = min(self.delay * 2, self.maximum)
        return wait

    def record_success(self):
        self.delay = self.base
