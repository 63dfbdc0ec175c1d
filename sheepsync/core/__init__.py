"""
Core utilities for Sheep Sync.

Shared constants, paths, errors, logging and formatting.
"""

from .constants import (
    GOLD_GENERATION_THRESHOLD,
    REDIRECT_URL,
    CATALOG_PATH,
    VOTE_URL,
    CLIENT_VERSION,
    COMPANION_CAPABILITIES,
)

from .errors import (
    SheepSyncError,
    CatalogUnreachable,
    CatalogCorrupt,
    DownloadFailed,
    InsufficientStorage,
    VoteSubmissionFailed,
)

from .paths import (
    get_certifi_ssl_context,
    is_relaxed_tls_host,
    get_data_dir,
    get_settings_path,
    get_offline_votes_path,
    get_logs_dir,
)

from .formatting import (
    format_size,
    format_duration,
    gb_to_bytes,
)

__all__ = [
    # Constants
    "GOLD_GENERATION_THRESHOLD",
    "REDIRECT_URL",
    "CATALOG_PATH",
    "VOTE_URL",
    "CLIENT_VERSION",
    "COMPANION_CAPABILITIES",
    # Errors
    "SheepSyncError",
    "CatalogUnreachable",
    "CatalogCorrupt",
    "DownloadFailed",
    "InsufficientStorage",
    "VoteSubmissionFailed",
    # Paths
    "get_certifi_ssl_context",
    "is_relaxed_tls_host",
    "get_data_dir",
    "get_settings_path",
    "get_offline_votes_path",
    "get_logs_dir",
    # Formatting
    "format_size",
    "format_duration",
    "gb_to_bytes",
]
