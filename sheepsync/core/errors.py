"""
Exception types for Sheep Sync.

Cycle-level failures (catalog) are raised and turned into an Error state by
the sync engine. Item-level failures are reported through DownloadResult and
never abort a cycle.
"""


class SheepSyncError(Exception):
    """Base exception for all Sheep Sync errors."""


class CatalogUnreachable(SheepSyncError):
    """Raised when the redirect or catalog endpoint cannot be reached."""


class CatalogCorrupt(SheepSyncError):
    """Raised when the catalog body cannot be decompressed or parsed."""


class DownloadFailed(SheepSyncError):
    """Raised for a transport error or size mismatch on a single sheep."""


class InsufficientStorage(SheepSyncError):
    """Raised when free disk space drops below the download threshold."""


class VoteSubmissionFailed(SheepSyncError):
    """Raised when the vote endpoint does not answer with HTTP 200."""
