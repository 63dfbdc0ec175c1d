"""
Centralized path management for Sheep Sync.

All app data lives under one data root so the cache, settings and queues
stay together. The root defaults to ~/.electricsheep and can be moved with
the SHEEPSYNC_ROOT environment variable.

Directory structure:
    ~/.electricsheep/
        sheep/free/          - Cached free sheep (generation < 10000)
        sheep/gold/          - Cached gold sheep
        downloads/           - Staging area for in-progress downloads
        metadata/            - Per-sheep metadata (downloaded_at, play_count)
        lists/               - Last catalog document fetched from the server
        logs/                - Session logs
        playback.json        - Last-played timestamps (LRU order)
        config.json          - Companion settings
        offline_votes.json   - Votes waiting to be resubmitted
"""

import os
import sys
from pathlib import Path
from urllib.parse import urlsplit

import certifi

from .constants import RELAXED_TLS_HOST_SUFFIXES

# Directory name for app data (hidden on Unix)
DATA_DIR_NAME = ".electricsheep"


def get_certifi_ssl_context() -> str:
    """Get path to certifi CA bundle, handling PyInstaller bundles."""
    if getattr(sys, "frozen", False):
        return str(Path(sys._MEIPASS) / "certifi" / "cacert.pem")
    return certifi.where()


def is_relaxed_tls_host(url_or_host: str) -> bool:
    """
    Check whether certificate validation is relaxed for a host.

    The sheep servers use self-signed certificates, so validation is skipped
    for them only. Every other host is verified against the certifi bundle.
    """
    host = urlsplit(url_or_host).hostname if "://" in url_or_host else url_or_host
    if not host:
        return False
    host = host.lower().rstrip(".")
    return any(host == suffix or host.endswith("." + suffix) for suffix in RELAXED_TLS_HOST_SUFFIXES)


def get_data_dir() -> Path:
    """
    Get the data root, creating it if needed.

    SHEEPSYNC_ROOT overrides the default location (used by tests and
    portable installs).
    """
    root = os.environ.get("SHEEPSYNC_ROOT")
    data_dir = Path(root) if root else Path.home() / DATA_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_settings_path() -> Path:
    """Get path to companion settings file."""
    return get_data_dir() / "config.json"


def get_offline_votes_path() -> Path:
    """Get path to the offline vote queue."""
    return get_data_dir() / "offline_votes.json"


def get_logs_dir() -> Path:
    """Get the session log directory."""
    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)
    return logs_dir
