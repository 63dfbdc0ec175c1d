"""
Sync operations module.

Handles the sheep cache, downloading, and the sync state machine.
"""

from .state import SyncState, RetryState
from .store import ContentStore, CacheEntry
from .downloader import FileDownloader, DownloadResult
from .engine import SyncEngine, EngineConfig, CycleStats

__all__ = [
    # State
    "SyncState",
    "RetryState",
    # Content store
    "ContentStore",
    "CacheEntry",
    # Downloader
    "FileDownloader",
    "DownloadResult",
    # Engine
    "SyncEngine",
    "EngineConfig",
    "CycleStats",
]
