"""
Sheep Sync - background cache agent for the Electric Sheep renderer.

Keeps the local sheep cache in step with the server catalog, evicts
least-recently-played sheep to stay under the size limit, and talks to the
co-located renderer over a small event bus.

Import from submodules directly:
    from sheepsync.config import CompanionSettings
    from sheepsync.catalog import CatalogClient
    from sheepsync.sync import ContentStore, SyncEngine
    from sheepsync.bridge import EventBus
    from sheepsync.votes import VoteSubmitter
"""


def _get_version():
    """Read version from VERSION file."""
    from pathlib import Path
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "0.0.0"


__version__ = _get_version()
