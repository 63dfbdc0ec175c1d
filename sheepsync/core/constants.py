"""
Shared constants for Sheep Sync.
"""

from .. import __version__

# Generation numbers at or above this are gold (high-res) sheep
GOLD_GENERATION_THRESHOLD = 10000

# Sheep server endpoints
REDIRECT_URL = "http://community.sheepserver.net/query.php"
CATALOG_PATH = "/cgi/list"
VOTE_URL = "https://v3d0.sheepserver.net/cgi/vote.cgi"

# Hosts whose self-signed certificates are accepted
RELAXED_TLS_HOST_SUFFIXES = ("sheepserver.net", "archive.org")

CLIENT_VERSION = f"PY_C_{__version__}"

# Advertised to the renderer with the companion-launched event
COMPANION_CAPABILITIES = "voting=1,rendering=0,gold=0"

# File extensions inside the cache
SHEEP_EXTENSION = ".avi"
STAGING_EXTENSION = ".tmp"
