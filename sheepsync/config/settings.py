"""
Companion settings management for Sheep Sync.

Manages config.json in the data root - preferences and the installation id
that persist across runs.
"""

import json
import math
import uuid
from pathlib import Path

from ..core.formatting import gb_to_bytes
from ..core.logging import debug_log


def _text(value) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _non_negative(value) -> bool:
    return math.isfinite(value) and value >= 0


def _positive(value) -> bool:
    return math.isfinite(value) and value > 0


def _port(value) -> bool:
    return 0 < value < 65536


def _read_field(data: dict, key: str, convert, default, valid=None):
    """Convert data[key], or return default if it's missing, mistyped or invalid."""
    if key not in data:
        return default
    try:
        value = convert(data[key])
    except (TypeError, ValueError, OverflowError):
        debug_log(f"SETTINGS | invalid {key}={data[key]!r} | using default")
        return default
    if valid is not None and not valid(value):
        debug_log(f"SETTINGS | out of range {key}={value!r} | using default")
        return default
    return value


class CompanionSettings:
    """
    Manages config.json - companion preferences that persist across runs.

    Stores:
    - Cache size limit (GB) used as the eviction budget
    - Sync timing (cycle interval, low-disk retry, backoff base and cap)
    - Event bus addressing (name prefix, UDP ports)
    - The per-installation id sent to the sheep server
    """

    DEFAULT_CACHE_SIZE_GB = 2.0
    DEFAULT_MIN_FREE_BYTES = 1_000_000_000
    DEFAULT_SYNC_INTERVAL = 3600
    DEFAULT_LOW_DISK_RETRY = 300
    DEFAULT_RETRY_BASE = 600
    DEFAULT_RETRY_MAX = 86400
    DEFAULT_EVENT_PREFIX = "org.electricsheep."
    DEFAULT_LISTEN_PORT = 48620
    DEFAULT_PEER_PORT = 48621

    def __init__(self, path: Path):
        self.path = path
        self.cache_size_gb: float = self.DEFAULT_CACHE_SIZE_GB
        # Downloads pause when the volume has less than this free
        self.min_free_bytes: int = self.DEFAULT_MIN_FREE_BYTES
        self.sync_interval: float = self.DEFAULT_SYNC_INTERVAL
        self.low_disk_retry: float = self.DEFAULT_LOW_DISK_RETRY
        self.retry_base: float = self.DEFAULT_RETRY_BASE
        self.retry_max: float = self.DEFAULT_RETRY_MAX
        self.event_prefix: str = self.DEFAULT_EVENT_PREFIX
        self.listen_port: int = self.DEFAULT_LISTEN_PORT
        self.peer_port: int = self.DEFAULT_PEER_PORT
        self.installation_id: str = ""

    @classmethod
    def load(cls, path: Path) -> "CompanionSettings":
        """
        Load settings from file.

        Missing or corrupt files give defaults. A field with a wrong type or
        an out-of-range value falls back to its own default; the rest of
        the file is still used.
        """
        settings = cls(path)

        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
            except (json.JSONDecodeError, IOError):
                data = {}
            if not isinstance(data, dict):
                data = {}

            settings.cache_size_gb = _read_field(data, "cache_size_gb", float, cls.DEFAULT_CACHE_SIZE_GB, _non_negative)
            settings.min_free_bytes = _read_field(data, "min_free_bytes", int, cls.DEFAULT_MIN_FREE_BYTES, _non_negative)
            settings.sync_interval = _read_field(data, "sync_interval", float, cls.DEFAULT_SYNC_INTERVAL, _positive)
            settings.low_disk_retry = _read_field(data, "low_disk_retry", float, cls.DEFAULT_LOW_DISK_RETRY, _positive)
            settings.retry_base = _read_field(data, "retry_base", float, cls.DEFAULT_RETRY_BASE, _positive)
            settings.retry_max = _read_field(data, "retry_max", float, cls.DEFAULT_RETRY_MAX, _positive)
            settings.event_prefix = _read_field(data, "event_prefix", _text, cls.DEFAULT_EVENT_PREFIX)
            settings.listen_port = _read_field(data, "listen_port", int, cls.DEFAULT_LISTEN_PORT, _port)
            settings.peer_port = _read_field(data, "peer_port", int, cls.DEFAULT_PEER_PORT, _port)
            settings.installation_id = _read_field(data, "installation_id", _text, "")

            # Backoff cap below its base would make RetryState reject the pair
            if settings.retry_max < settings.retry_base:
                settings.retry_max = max(settings.retry_base, cls.DEFAULT_RETRY_MAX)

        return settings

    def save(self):
        """Atomic write: write to .tmp file, then rename."""
        data = {
            "cache_size_gb": self.cache_size_gb,
            "min_free_bytes": self.min_free_bytes,
            "sync_interval": self.sync_interval,
            "low_disk_retry": self.low_disk_retry,
            "retry_base": self.retry_base,
            "retry_max": self.retry_max,
            "event_prefix": self.event_prefix,
            "listen_port": self.listen_port,
            "peer_port": self.peer_port,
            "installation_id": self.installation_id,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self.path)

    @property
    def cache_budget_bytes(self) -> int:
        """Eviction budget derived from cache_size_gb."""
        return gb_to_bytes(self.cache_size_gb)

    def get_or_create_installation_id(self) -> str:
        """
        Return the installation id, generating and saving one on first use.

        The id is an opaque 32-char lowercase hex string and never changes
        once written.
        """
        if not self.installation_id:
            self.installation_id = uuid.uuid4().hex
            self.save()
        return self.installation_id
