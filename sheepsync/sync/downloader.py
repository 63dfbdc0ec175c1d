"""
Sheep downloader for Sheep Sync.

Streams one sheep at a time into its staging path using aiohttp. The sync
engine awaits each download, so cancelling the engine's task cancels the
transfer in flight.
"""

import asyncio
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import aiohttp

from ..catalog.models import ContentItem
from ..core.errors import DownloadFailed
from ..core.logging import debug_log
from ..core.paths import get_certifi_ssl_context, is_relaxed_tls_host


@dataclass
class DownloadResult:
    """Result of a single sheep download."""
    success: bool
    file_path: Path
    message: str
    bytes_downloaded: int = 0


def _discard(path: Path):
    try:
        path.unlink()
    except OSError:
        pass


class FileDownloader:
    """
    Async sheep downloader.

    Holds one aiohttp session for the life of the agent. Certificate checks
    are relaxed per request for the sheep server hosts only.
    """

    def __init__(
        self,
        timeout: Tuple[int, int] = (30, 300),
        chunk_size: int = 65536,
    ):
        self.timeout = aiohttp.ClientTimeout(connect=timeout[0], sock_read=timeout[1])
        self.chunk_size = chunk_size
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=get_certifi_ssl_context())
            connector = aiohttp.TCPConnector(
                limit=4,
                ttl_dns_cache=300,
                keepalive_timeout=30,
                ssl=ssl_context,
            )
            self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
        return self._session

    async def close(self):
        """Close the shared session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def download(self, item: ContentItem, dest: Path) -> DownloadResult:
        """
        Download a sheep to dest (its staging path).

        Never raises for transport problems; failures come back as a
        DownloadResult with success=False and dest removed. Cancellation
        removes dest and propagates.
        """
        try:
            downloaded = await self._fetch_to(item, dest)
        except asyncio.CancelledError:
            _discard(dest)
            raise
        except DownloadFailed as e:
            _discard(dest)
            return DownloadResult(False, dest, f"ERR: {item.full_id} - {e}")
        except asyncio.TimeoutError:
            _discard(dest)
            return DownloadResult(False, dest, f"ERR (timeout): {item.full_id}")
        except aiohttp.ClientResponseError as e:
            _discard(dest)
            return DownloadResult(False, dest, f"ERR (HTTP {e.status}): {item.full_id}")
        except (aiohttp.ClientError, OSError) as e:
            _discard(dest)
            return DownloadResult(False, dest, f"ERR: {item.full_id} - {e}")

        return DownloadResult(
            success=True,
            file_path=dest,
            message=f"OK: {item.filename}",
            bytes_downloaded=downloaded,
        )

    async def _fetch_to(self, item: ContentItem, dest: Path) -> int:
        """Stream the sheep into dest and verify its size. Returns bytes written."""
        if not item.url:
            raise DownloadFailed("no download URL")

        session = await self._get_session()
        request_kwargs = {"ssl": False} if is_relaxed_tls_host(item.url) else {}

        async with session.get(item.url, allow_redirects=True, **request_kwargs) as response:
            response.raise_for_status()
            downloaded = await self._write_response(response, dest)

        if item.size is not None and downloaded != item.size:
            raise DownloadFailed(f"size mismatch: expected {item.size}, got {downloaded}")

        debug_log(f"DOWNLOAD | id={item.full_id} | bytes={downloaded}")
        return downloaded

    async def _write_response(self, response: aiohttp.ClientResponse, dest: Path) -> int:
        """Write response content to file in chunks."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        downloaded = 0
        with open(dest, "wb") as f:
            async for chunk in response.content.iter_chunked(self.chunk_size):
                if chunk:
                    f.write(chunk)
                    downloaded += len(chunk)
        return downloaded
