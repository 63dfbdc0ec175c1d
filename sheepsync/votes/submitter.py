"""
Vote submission for Sheep Sync.

A vote applies to whatever the renderer is playing right now, so each vote
starts with a bridge query. Votes the server doesn't accept go to the
offline queue and are retried by flush_offline_queue().
"""

import asyncio
import ssl
from typing import Optional

import aiohttp

from ..bridge.bus import EventBus
from ..bridge.events import VoteDirection
from ..core.constants import VOTE_URL
from ..core.errors import VoteSubmissionFailed
from ..core.logging import debug_log
from ..core.paths import get_certifi_ssl_context, is_relaxed_tls_host
from .queue import OfflineVoteQueue, VoteRecord


class VoteSubmitter:
    """Submits votes for the playing sheep, queueing them when offline."""

    def __init__(
        self,
        bus: EventBus,
        queue: OfflineVoteQueue,
        installation_id: str,
        vote_url: str = VOTE_URL,
        timeout: int = 10,
    ):
        self.bus = bus
        self.queue = queue
        self.installation_id = installation_id
        self.vote_url = vote_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            ssl_context = ssl.create_default_context(cafile=get_certifi_ssl_context())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def vote(self, direction: VoteDirection) -> Optional[bool]:
        """
        Vote on the sheep the renderer is playing.

        Returns:
            None if nothing is playing (no vote cast), True if the server
            accepted it, False if it was queued for later
        """
        print(f"  Vote {direction.value} triggered")
        sheep_id = await self.bus.query_currently_playing()
        if sheep_id is None:
            print("  No sheep playing or renderer not running")
            return None

        if await self.submit(sheep_id, direction):
            self.bus.send_vote_feedback(direction)
            print(f"  Vote submitted for {sheep_id}")
            return True

        await self.queue.add(VoteRecord.create(sheep_id, direction))
        print("  Vote queued for later")
        return False

    async def submit(self, content_id: str, direction: VoteDirection) -> bool:
        """Send one vote. Returns True on HTTP 200, False otherwise."""
        try:
            await self._request_vote(content_id, direction)
        except VoteSubmissionFailed as e:
            debug_log(f"VOTES | failed | id={content_id} | {e}")
            return False
        return True

    async def _request_vote(self, content_id: str, direction: VoteDirection):
        """GET vote.cgi?id={id}&vote={1|-1}&u={installation id}."""
        params = {
            "id": content_id,
            "vote": str(direction.vote_value),
            "u": self.installation_id,
        }
        request_kwargs = {"ssl": False} if is_relaxed_tls_host(self.vote_url) else {}
        try:
            session = await self._get_session()
            async with session.get(self.vote_url, params=params, **request_kwargs) as response:
                if response.status != 200:
                    raise VoteSubmissionFailed(f"HTTP {response.status}")
        except asyncio.TimeoutError as e:
            raise VoteSubmissionFailed("timeout") from e
        except aiohttp.ClientError as e:
            raise VoteSubmissionFailed(str(e)) from e

    async def flush_offline_queue(self) -> int:
        """
        Resubmit every queued vote, then rewrite the queue.

        All submissions are awaited before the file is rewritten, so the
        queue ends up holding exactly the votes that still failed.

        Returns:
            Number of votes submitted
        """
        async with self.queue.lock:
            records = self.queue.load()
            pending = [r for r in records if not r.submitted]
            if not records:
                return 0

            results = await asyncio.gather(
                *(self.submit(r.content_id, r.direction) for r in pending)
            )
            for record, ok in zip(pending, results):
                if ok:
                    record.submitted = True

            remaining = [r for r in records if not r.submitted]
            self.queue.save(remaining)

        submitted = len(pending) - len(remaining)
        if pending:
            print(f"  Offline votes: {submitted} submitted, {len(remaining)} still queued")
        return submitted
