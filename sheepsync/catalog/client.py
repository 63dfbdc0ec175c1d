"""
Sheep server catalog client for Sheep Sync.

Handles the HTTP interactions needed to get the current sheep list: the
redirect lookup that names the active server, and the list download itself.
Does NOT download sheep (see FileDownloader for that).
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

import requests

from ..core.constants import CATALOG_PATH, CLIENT_VERSION, REDIRECT_URL
from ..core.errors import CatalogCorrupt, CatalogUnreachable
from ..core.logging import debug_log
from ..core.paths import get_certifi_ssl_context, is_relaxed_tls_host
from .models import ContentItem
from .parser import decode_catalog_body, parse_catalog

_HOST_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::\d+)?$")

CATALOG_FILENAME = "catalog.xml"


@dataclass
class CatalogClientConfig:
    """Configuration for CatalogClient."""
    installation_id: str
    redirect_url: str = REDIRECT_URL
    client_version: str = CLIENT_VERSION
    timeout: int = 30
    lists_dir: Optional[Path] = None  # Where to keep the last catalog document


class CatalogClient:
    """
    Sheep server catalog client.

    Catalog fetches are blocking; the sync engine runs them in an executor.
    """

    def __init__(self, config: CatalogClientConfig):
        self.config = config
        self._requests = 0

    @property
    def request_count(self) -> int:
        """Total HTTP requests made by this client."""
        return self._requests

    def _verify_for(self, url: str) -> Union[bool, str]:
        """Relaxed hosts skip certificate checks; everyone else uses certifi."""
        if is_relaxed_tls_host(url):
            return False
        return get_certifi_ssl_context()

    def _get(self, url: str, **kwargs) -> requests.Response:
        """GET with transport failures mapped to CatalogUnreachable."""
        try:
            self._requests += 1
            response = requests.get(
                url,
                timeout=self.config.timeout,
                verify=self._verify_for(url),
                **kwargs,
            )
            response.raise_for_status()
            return response
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise CatalogUnreachable(f"HTTP {status} from {url}") from e
        except requests.exceptions.ContentDecodingError as e:
            # Server-declared gzip that doesn't decode
            raise CatalogCorrupt(f"Failed to decompress response: {e}") from e
        except requests.exceptions.RequestException as e:
            raise CatalogUnreachable(f"Failed to reach {url}: {e}") from e

    # =========================================================================
    # Endpoint resolution
    # =========================================================================

    @staticmethod
    def parse_redirect(body: str) -> Optional[str]:
        """
        Turn a redirect response body into a catalog endpoint URL.

        The body names the active server, either as a bare host
        ("v3d0.sheepserver.net") or as a URL. Returns None if it's neither.
        """
        text = body.strip()
        if not text:
            return None
        token = text.split()[0]

        if "://" in token:
            parts = urlsplit(token)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                return None
            return f"{parts.scheme}://{parts.netloc}{CATALOG_PATH}"

        host = token.rstrip("/")
        if not _HOST_RE.match(host):
            return None
        # Sheep servers use self-signed certs, so the list is fetched over HTTP
        return f"http://{host}{CATALOG_PATH}"

    def resolve_endpoint(self, client_id: Optional[str] = None) -> str:
        """
        Ask the redirect server which catalog server is active.

        Args:
            client_id: Installation id (defaults to the configured one)

        Returns:
            Catalog endpoint URL

        Raises:
            CatalogUnreachable: on transport failure or an unusable response
        """
        client_id = client_id or self.config.installation_id
        url = f"{self.config.redirect_url.rstrip('/')}/{client_id}"
        response = self._get(url, params={"q": "redir", "u": client_id})

        endpoint = self.parse_redirect(response.text)
        if endpoint is None:
            raise CatalogUnreachable("Invalid redirect response")

        debug_log(f"CATALOG | redirect | endpoint={endpoint}")
        return endpoint

    # =========================================================================
    # Catalog download
    # =========================================================================

    def fetch_catalog(self, endpoint: str) -> bytes:
        """
        Download the catalog document from an endpoint.

        Returns:
            The XML document (already decompressed if it was gzip)

        Raises:
            CatalogUnreachable: on transport failure
            CatalogCorrupt: on an empty or undecodable body
        """
        params = {"v": self.config.client_version, "u": self.config.installation_id}
        response = self._get(endpoint, params=params, headers={"Accept-Encoding": "gzip"})
        raw = response.content

        document = decode_catalog_body(raw)
        debug_log(f"CATALOG | fetched | bytes={len(raw)} | decoded={len(document)}")
        self._save_document(document)
        return document

    def _save_document(self, document: bytes):
        """Keep a copy of the last good catalog in lists/ for inspection."""
        if not self.config.lists_dir:
            return
        try:
            self.config.lists_dir.mkdir(parents=True, exist_ok=True)
            target = self.config.lists_dir / CATALOG_FILENAME
            tmp = target.with_suffix(".xml.tmp")
            tmp.write_bytes(document)
            tmp.replace(target)
        except OSError as e:
            debug_log(f"CATALOG | save failed | error={e}")

    def fetch_items(self) -> list[ContentItem]:
        """Resolve the endpoint, download the catalog and parse it."""
        endpoint = self.resolve_endpoint()
        return parse_catalog(self.fetch_catalog(endpoint))
